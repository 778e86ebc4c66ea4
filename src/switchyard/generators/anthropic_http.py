"""Anthropic Messages API generator over plain HTTP."""

from __future__ import annotations

from contextlib import aclosing
import logging
from typing import TYPE_CHECKING, Any

from switchyard.content import TokenCount
from switchyard.converters.anthropic import (
    from_anthropic_response,
    from_anthropic_stream_event,
    stream_input_tokens,
    to_anthropic_request,
)
from switchyard.errors import ProtocolError
from switchyard.generators._http import HttpGeneratorBase
from switchyard.generators.base import GeneratorCapabilities, unsupported_embeddings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.content import (
        CanonicalRequest,
        CanonicalResponse,
        EmbedRequest,
        EmbedResult,
    )
    from switchyard.credentials import TokenSource

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"


def uses_bearer_scheme(token: str, *, oauth: bool = False) -> bool:
    """JWT-looking tokens, ``Bearer``-prefixed tokens and OAuth tokens use Authorization."""
    return oauth or token.startswith(("eyJ", "Bearer "))


class AnthropicHttpGenerator(HttpGeneratorBase):
    """Messages API generator for API keys and subscription OAuth tokens."""

    provider = "anthropic"

    def __init__(
        self, tokens: TokenSource, *, base_url: str = ANTHROPIC_BASE_URL, **kwargs: Any
    ) -> None:
        super().__init__(tokens, base_url=base_url, **kwargs)
        self._scheme_logged = False

    @property
    def capabilities(self) -> GeneratorCapabilities:
        return GeneratorCapabilities(
            streaming=True, embeddings=False, native_token_count=True
        )

    def _auth_headers(self, token: str) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        bearer = uses_bearer_scheme(token, oauth=getattr(self._tokens, "is_oauth", False))
        if not self._scheme_logged:
            logger.debug(
                "%s auth scheme: %s", self.provider, "bearer" if bearer else "x-api-key"
            )
            self._scheme_logged = True
        if bearer:
            headers["authorization"] = f"Bearer {token.removeprefix('Bearer ')}"
        else:
            headers["x-api-key"] = token
        return headers

    def _body(self, request: CanonicalRequest, *, stream: bool) -> dict[str, Any]:
        body = to_anthropic_request(request, model=request.model or self._model)
        body["stream"] = stream
        return body

    async def generate_content(self, request: CanonicalRequest) -> CanonicalResponse:
        body = self._body(request, stream=False)
        payload = await self._post_json("messages", body, phase="generate")
        return from_anthropic_response(payload)

    async def generate_content_stream(
        self, request: CanonicalRequest
    ) -> AsyncIterator[CanonicalResponse]:
        body = self._body(request, stream=True)
        input_tokens: int | None = None
        async with aclosing(self._stream_payloads("messages", body)) as events:
            async for event in events:
                if event.get("type") == "message_start":
                    input_tokens = stream_input_tokens(event)
                chunk = from_anthropic_stream_event(event, input_tokens=input_tokens)
                if chunk is not None:
                    yield chunk

    async def count_tokens(self, request: CanonicalRequest) -> TokenCount:
        """Exact input-token count from ``/messages/count_tokens``."""
        full = to_anthropic_request(request, model=request.model or self._model)
        body = {k: full[k] for k in ("model", "messages", "system") if k in full}
        payload = await self._post_json(
            "messages/count_tokens", body, phase="count_tokens"
        )
        count = payload.get("input_tokens")
        if not isinstance(count, int):
            raise ProtocolError(
                "count_tokens response has no input_tokens",
                provider=self.provider,
                phase="count_tokens",
            )
        return TokenCount(total_tokens=count, estimated=False)

    async def embed_content(self, request: EmbedRequest) -> EmbedResult:
        raise unsupported_embeddings(self.provider)
