"""Incremental parsers for streamed provider output.

Two framings are supported: server-sent events (``data:`` lines carrying JSON,
terminated by ``[DONE]``) and line-delimited JSON as printed by the vendor CLI
(terminated by a ``result`` object). Both decoders accept arbitrary byte or
text splits: output never depends on where the transport cut the stream.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import codecs
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

SSE_DONE = "[DONE]"

FrameKind = Literal["assistant", "result", "system"]
FRAME_KINDS: frozenset[str] = frozenset({"assistant", "result", "system"})

_PREVIEW_CHARS = 100


def _preview(line: str) -> str:
    if len(line) <= _PREVIEW_CHARS:
        return line
    return line[:_PREVIEW_CHARS] + "..."


def _loads_object(text: str, *, source: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except ValueError as exc:
        logger.warning("Skipping malformed %s frame (%s): %s", source, exc, _preview(text))
        return None
    if not isinstance(value, dict):
        logger.warning("Skipping non-object %s frame: %s", source, _preview(text))
        return None
    return value


class _LineBuffer(ABC):
    """Turns arbitrary byte/str chunks into complete lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self.done = False

    def _decode(self, data: bytes | str) -> str:
        if isinstance(data, str):
            return data
        return self._decoder.decode(data)

    def _lines(self, data: bytes | str) -> list[str]:
        self._pending += self._decode(data)
        *complete, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in complete]

    def _remaining(self) -> str:
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return tail.rstrip("\r")

    @abstractmethod
    def _handle(self, line: str) -> list[Any]:
        """Frames completed by one whole *line*."""

    def feed(self, data: bytes | str) -> list[Any]:
        """Consume one chunk and return the frames it completed."""
        out: list[Any] = []
        if self.done:
            return out
        for line in self._lines(data):
            out.extend(self._handle(line))
            if self.done:
                self._pending = ""
                break
        return out

    def flush(self) -> list[Any]:
        """Parse whatever is buffered once the input has ended."""
        if self.done:
            return []
        tail = self._remaining()
        if not tail.strip():
            return []
        return self._handle(tail)


class SSEDecoder(_LineBuffer):
    """Decoder for ``text/event-stream`` bodies.

    Each ``data:`` line is one JSON payload. Other SSE fields (``event:``,
    ``id:``, comments) are ignored; ``data: [DONE]`` ends the stream.
    """

    def _handle(self, line: str) -> list[dict[str, Any]]:
        if not line.startswith("data:"):
            return []
        data = line[5:].strip()
        if not data:
            return []
        if data == SSE_DONE:
            self.done = True
            return []
        payload = _loads_object(data, source="SSE")
        return [payload] if payload is not None else []


@dataclass(frozen=True)
class StreamFrame:
    """One recognized line of CLI ``stream-json`` output."""

    kind: FrameKind
    payload: dict[str, Any]


class JSONLinesDecoder(_LineBuffer):
    """Decoder for newline-delimited JSON with a terminal ``result`` frame."""

    def _handle(self, line: str) -> list[StreamFrame]:
        if not line.strip():
            return []
        payload = _loads_object(line, source="JSONL")
        if payload is None:
            return []
        kind = payload.get("type")
        if kind not in FRAME_KINDS:
            logger.debug("Ignoring JSONL frame of type %r", kind)
            return []
        if kind == "result":
            self.done = True
        return [StreamFrame(kind=kind, payload=payload)]


async def iter_sse_payloads(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[dict[str, Any]]:
    """Yield SSE JSON payloads from an async byte stream until ``[DONE]``."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for payload in decoder.feed(chunk):
            yield payload
        if decoder.done:
            return
    for payload in decoder.flush():
        yield payload


async def iter_json_line_frames(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[StreamFrame]:
    """Yield CLI frames from an async byte stream up to the ``result`` frame."""
    decoder = JSONLinesDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
        if decoder.done:
            return
    for frame in decoder.flush():
        yield frame
