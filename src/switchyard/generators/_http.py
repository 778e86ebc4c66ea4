"""Shared httpx plumbing for the HTTP generators.

Every call goes through ``call_with_auth_retry``: one token refresh and one
retry on an authentication failure, nothing else. Other failures surface on
the first attempt. Streaming calls apply the envelope to the start phase
only; once the first byte has been read a failure surfaces as-is.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from switchyard._errors import error_from_response, wrap_transport_error
from switchyard._http import DEFAULT_USER_AGENT
from switchyard.errors import NoStreamBodyError, ProtocolError
from switchyard.retry import call_with_auth_retry
from switchyard.streaming import iter_sse_payloads

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from switchyard.credentials import TokenSource

logger = logging.getLogger(__name__)


class HttpGeneratorBase(ABC):
    """Owns one ``httpx.AsyncClient`` and the auth envelope around it.

    ``timeout_s`` bounds each whole call (the full body for non-streaming
    calls, the start phase for streams) through ``asyncio.timeout``.
    """

    provider: str = "http"

    def __init__(
        self,
        tokens: TokenSource,
        *,
        base_url: str,
        model: str | None = None,
        provider: str | None = None,
        timeout_s: float = 120.0,
        proxy: str | None = None,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._tokens = tokens
        self._model = model
        if provider is not None:
            self.provider = provider
        self._timeout_s = timeout_s
        self._extra_headers = dict(headers or {})
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_s),
            proxy=proxy,
            transport=transport,
        )
        self._closed = False

    @property
    def model(self) -> str | None:
        return self._model

    @abstractmethod
    def _auth_headers(self, token: str) -> dict[str, str]:
        """Headers carrying *token* in the provider's scheme."""

    def _headers(self, token: str) -> dict[str, str]:
        headers = {
            "content-type": "application/json",
            "user-agent": DEFAULT_USER_AGENT,
        }
        headers.update(self._extra_headers)
        headers.update(self._auth_headers(token))
        return headers

    async def _post_json(
        self, path: str, body: dict[str, Any], *, phase: str
    ) -> dict[str, Any]:
        """POST *body* and return the decoded JSON object."""

        async def call(token: str) -> dict[str, Any]:
            try:
                async with asyncio.timeout(self._timeout_s):
                    response = await self._client.post(
                        path, json=body, headers=self._headers(token)
                    )
            except (httpx.HTTPError, TimeoutError) as exc:
                raise wrap_transport_error(
                    exc, provider=self.provider, phase=phase
                ) from exc
            if response.status_code >= 400:
                raise error_from_response(
                    response.status_code,
                    response.content,
                    provider=self.provider,
                    phase=phase,
                    headers=response.headers,
                )
            try:
                payload = response.json()
            except ValueError as exc:
                raise ProtocolError(
                    f"{self.provider} {phase} returned invalid JSON",
                    provider=self.provider,
                    phase=phase,
                    status_code=response.status_code,
                ) from exc
            if not isinstance(payload, dict):
                raise ProtocolError(
                    f"{self.provider} {phase} returned a non-object JSON body",
                    provider=self.provider,
                    phase=phase,
                )
            return payload

        return await call_with_auth_retry(call, self._tokens, provider=self.provider)

    async def _open_stream(self, path: str, body: dict[str, Any]) -> httpx.Response:
        async def call(token: str) -> httpx.Response:
            request = self._client.build_request(
                "POST", path, json=body, headers=self._headers(token)
            )
            try:
                async with asyncio.timeout(self._timeout_s):
                    response = await self._client.send(request, stream=True)
            except (httpx.HTTPError, TimeoutError) as exc:
                raise wrap_transport_error(
                    exc, provider=self.provider, phase="stream"
                ) from exc

            if response.status_code >= 400:
                try:
                    content = await response.aread()
                finally:
                    await response.aclose()
                raise error_from_response(
                    response.status_code,
                    content,
                    provider=self.provider,
                    phase="stream",
                    headers=response.headers,
                )
            if response.status_code == 204 or response.headers.get("content-length") == "0":
                await response.aclose()
                raise NoStreamBodyError(
                    f"{self.provider} stream returned no body",
                    provider=self.provider,
                    phase="stream",
                    status_code=response.status_code,
                )
            return response

        return await call_with_auth_retry(call, self._tokens, provider=self.provider)

    async def _stream_payloads(
        self, path: str, body: dict[str, Any]
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded SSE payloads; the response is closed on every exit path."""
        response = await self._open_stream(path, body)
        received = 0

        async def counted() -> AsyncIterator[bytes]:
            nonlocal received
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                yield chunk

        try:
            async for payload in iter_sse_payloads(counted()):
                yield payload
            if received == 0:
                raise NoStreamBodyError(
                    f"{self.provider} stream ended without any data",
                    provider=self.provider,
                    phase="stream",
                )
        except httpx.HTTPError as exc:
            raise wrap_transport_error(
                exc, provider=self.provider, phase="stream"
            ) from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client when this generator created it."""
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()
