"""Generator backed by the vendor CLI running as a subprocess.

Each call spawns one process: the rendered prompt goes to stdin, which is
then closed, and the answer comes back on stdout as a single JSON object
(``--output-format=json``) or as JSON lines (``--output-format=stream-json``).
The process is always reaped: on timeout, cancellation, parse failure or an
early ``aclose()`` from the consumer it receives SIGTERM, then SIGKILL after a
grace period.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
import json
import logging
import shutil
from typing import TYPE_CHECKING

from switchyard._errors import error_from_payload
from switchyard.content import TokenCount
from switchyard.converters.cli import (
    PROVIDER,
    from_cli_result,
    from_cli_stream_event,
    render_prompt,
)
from switchyard.errors import (
    AuthenticationError,
    CliNotFoundError,
    ProtocolError,
    TransportError,
)
from switchyard.generators.base import (
    GeneratorCapabilities,
    estimate_request_tokens,
    unsupported_embeddings,
)
from switchyard.retry import RetryPolicy, retry_async, should_retry_subprocess
from switchyard.streaming import iter_json_line_frames

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping, Sequence

    from switchyard.content import (
        CanonicalRequest,
        CanonicalResponse,
        EmbedRequest,
        EmbedResult,
    )

logger = logging.getLogger(__name__)

DEFAULT_CLI_MODEL = "sonnet"
DEFAULT_KILL_GRACE_S = 2.0
_READ_SIZE = 64 * 1024

# The CLI only answers; it must not act on the local machine.
DISALLOWED_TOOLS: tuple[str, ...] = (
    "Bash",
    "Edit",
    "MultiEdit",
    "Write",
    "NotebookEdit",
    "Read",
    "Glob",
    "Grep",
    "WebFetch",
    "WebSearch",
    "Task",
    "TodoWrite",
)

CLI_MODEL_ALIASES: dict[str, str] = {
    "claude-sonnet-4-20250514": "sonnet",
    "claude-opus-4-1-20250805": "opus",
    "claude-3-5-sonnet-20241022": "sonnet",
    "claude-3-opus-20240229": "opus",
}


def cli_model_name(model: str | None) -> str:
    """Map full Claude model ids onto the CLI's short aliases."""
    if not model:
        return DEFAULT_CLI_MODEL
    if model in CLI_MODEL_ALIASES:
        return CLI_MODEL_ALIASES[model]
    if model.startswith("claude-"):
        for family in ("opus", "sonnet"):
            if family in model:
                return family
    return model


@dataclass(frozen=True)
class CliInfo:
    """Result of probing the CLI binary."""

    available: bool
    version: str | None = None
    path: str | None = None


def resolve_cli_path(cli_path: str) -> str:
    """Absolute path of *cli_path*, or ``CliNotFoundError``."""
    resolved = shutil.which(cli_path)
    if resolved is None:
        raise CliNotFoundError(
            f"Claude CLI not found: {cli_path!r}",
            hint="Install it with: npm install -g @anthropic-ai/claude-code",
            retryable=False,
            provider=PROVIDER,
            phase="spawn",
        )
    return resolved


async def probe_cli(cli_path: str = "claude", *, timeout_s: float = 5.0) -> CliInfo:
    """Run ``<cli> --version`` and report availability."""
    try:
        path = resolve_cli_path(cli_path)
    except CliNotFoundError:
        return CliInfo(available=False)
    try:
        proc = await asyncio.create_subprocess_exec(
            path,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        logger.debug("CLI probe failed to start %s: %s", path, exc)
        return CliInfo(available=False, path=path)
    try:
        async with asyncio.timeout(timeout_s):
            stdout, _ = await proc.communicate()
    except TimeoutError:
        await _terminate(proc, grace_s=DEFAULT_KILL_GRACE_S)
        return CliInfo(available=False, path=path)
    if proc.returncode != 0:
        return CliInfo(available=False, path=path)
    return CliInfo(
        available=True, version=stdout.decode("utf-8", "replace").strip(), path=path
    )


async def _terminate(proc: asyncio.subprocess.Process, *, grace_s: float) -> None:
    """SIGTERM, wait up to *grace_s*, then SIGKILL."""
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), grace_s)
        return
    except TimeoutError:
        logger.warning("CLI process %s ignored SIGTERM; killing it", proc.pid)
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


class ClaudeCliGenerator:
    """Generator that shells out to the subscription CLI."""

    provider = PROVIDER

    def __init__(
        self,
        *,
        cli_path: str = "claude",
        model: str | None = None,
        timeout_s: float = 120.0,
        retry: RetryPolicy | None = None,
        kill_grace_s: float = DEFAULT_KILL_GRACE_S,
        extra_args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._cli_path = cli_path
        self._model = model
        self._timeout_s = timeout_s
        self._retry = retry or RetryPolicy()
        self._kill_grace_s = kill_grace_s
        self._extra_args = tuple(extra_args)
        self._env = dict(env) if env is not None else None

    @property
    def model(self) -> str | None:
        return self._model

    @property
    def capabilities(self) -> GeneratorCapabilities:
        return GeneratorCapabilities(
            streaming=True, embeddings=False, native_token_count=False
        )

    def _args(self, model: str, *, stream: bool) -> list[str]:
        args = ["-p"]
        if stream:
            args += ["--output-format=stream-json", "--verbose"]
        else:
            args.append("--output-format=json")
        args += ["--model", model, "--disallowedTools", ",".join(DISALLOWED_TOOLS)]
        args += self._extra_args
        return args

    async def _spawn(self, args: list[str]) -> asyncio.subprocess.Process:
        path = resolve_cli_path(self._cli_path)
        logger.debug("Spawning %s %s", path, " ".join(args[:3]))
        try:
            return await asyncio.create_subprocess_exec(
                path,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except FileNotFoundError as exc:
            raise CliNotFoundError(
                f"Claude CLI not found: {path!r}",
                hint="Install it with: npm install -g @anthropic-ai/claude-code",
                retryable=False,
                provider=PROVIDER,
                phase="spawn",
            ) from exc
        except OSError as exc:
            raise TransportError(
                f"Could not start Claude CLI: {exc}",
                retryable=False,
                provider=PROVIDER,
                phase="spawn",
            ) from exc

    def _exit_error(self, code: int | None, stderr: bytes, *, phase: str) -> Exception:
        detail = stderr.decode("utf-8", "replace").strip()[:500]
        classified = error_from_payload(None, detail, provider=PROVIDER, phase=phase)
        if isinstance(classified, AuthenticationError):
            return classified
        return TransportError(
            f"Claude CLI exited with code {code}: {detail or 'no stderr output'}",
            retryable=True,
            provider=PROVIDER,
            phase=phase,
        )

    def _timeout_error(self, phase: str) -> TransportError:
        return TransportError(
            f"Claude CLI timed out after {self._timeout_s}s",
            retryable=True,
            provider=PROVIDER,
            phase=phase,
        )

    async def _run_once(self, prompt: str, model: str) -> CanonicalResponse:
        proc = await self._spawn(self._args(model, stream=False))
        try:
            async with asyncio.timeout(self._timeout_s):
                stdout, stderr = await proc.communicate((prompt + "\n").encode("utf-8"))
        except TimeoutError as exc:
            raise self._timeout_error("generate") from exc
        finally:
            await _terminate(proc, grace_s=self._kill_grace_s)

        if proc.returncode != 0:
            raise self._exit_error(proc.returncode, stderr, phase="generate")
        try:
            payload = json.loads(stdout)
        except ValueError as exc:
            raise ProtocolError(
                "Could not parse Claude CLI output as JSON",
                retryable=True,
                provider=PROVIDER,
                phase="generate",
            ) from exc
        return from_cli_result(payload)

    async def generate_content(self, request: CanonicalRequest) -> CanonicalResponse:
        prompt = render_prompt(request)
        model = cli_model_name(request.model or self._model)
        logger.debug("CLI generate with model %s, prompt length %d", model, len(prompt))
        return await retry_async(
            lambda: self._run_once(prompt, model),
            policy=self._retry,
            should_retry=should_retry_subprocess,
        )

    async def _read_stdout(
        self, proc: asyncio.subprocess.Process
    ) -> AsyncIterator[bytes]:
        if proc.stdout is None:
            raise TransportError(
                "Claude CLI stdout pipe is not available",
                retryable=False,
                provider=PROVIDER,
                phase="stream",
            )
        while True:
            try:
                chunk = await asyncio.wait_for(
                    proc.stdout.read(_READ_SIZE), self._timeout_s
                )
            except TimeoutError as exc:
                raise self._timeout_error("stream") from exc
            if not chunk:
                return
            yield chunk

    async def generate_content_stream(
        self, request: CanonicalRequest
    ) -> AsyncIterator[CanonicalResponse]:
        """Stream JSON-line output; not retried once the process is running."""
        prompt = render_prompt(request)
        model = cli_model_name(request.model or self._model)
        proc = await self._spawn(self._args(model, stream=True))
        if proc.stdin is None or proc.stderr is None:
            await _terminate(proc, grace_s=self._kill_grace_s)
            raise TransportError(
                "Claude CLI pipes are not available",
                retryable=False,
                provider=PROVIDER,
                phase="spawn",
            )
        stderr_task = asyncio.create_task(proc.stderr.read())
        finished = False
        try:
            try:
                proc.stdin.write((prompt + "\n").encode("utf-8"))
                await proc.stdin.drain()
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                logger.debug("CLI closed stdin early; exit status will tell why")

            text_seen = False
            async for frame in iter_json_line_frames(self._read_stdout(proc)):
                chunk = from_cli_stream_event(
                    frame.kind, frame.payload, text_seen=text_seen
                )
                if frame.kind == "result":
                    finished = True
                if chunk is None:
                    continue
                if frame.kind == "assistant":
                    text_seen = True
                yield chunk

            if not finished:
                try:
                    code = await asyncio.wait_for(proc.wait(), self._kill_grace_s)
                except TimeoutError:
                    code = None
                stderr = b""
                if code is not None:
                    with contextlib.suppress(TimeoutError):
                        stderr = await asyncio.wait_for(
                            asyncio.shield(stderr_task), self._kill_grace_s
                        )
                if code not in (0, None):
                    raise self._exit_error(code, stderr, phase="stream")
                raise ProtocolError(
                    "Claude CLI stream ended without a result",
                    provider=PROVIDER,
                    phase="stream",
                )
        finally:
            if finished:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(proc.wait(), self._kill_grace_s)
            await _terminate(proc, grace_s=self._kill_grace_s)
            if not stderr_task.done():
                stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task

    async def count_tokens(self, request: CanonicalRequest) -> TokenCount:
        return estimate_request_tokens(request)

    async def embed_content(self, request: EmbedRequest) -> EmbedResult:
        raise unsupported_embeddings(PROVIDER)

    async def aclose(self) -> None:
        """Nothing to release; each call owns and reaps its own process."""
