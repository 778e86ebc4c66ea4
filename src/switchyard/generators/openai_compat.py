"""Generator for OpenAI chat-completions and every compatible endpoint.

OpenRouter, Gemini's compatibility endpoint, Qwen, Ollama and LM Studio all
go through this class with a different base URL and token.
"""

from __future__ import annotations

from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from switchyard.content import EmbedResult, Usage
from switchyard.converters.openai import (
    from_openai_response,
    from_openai_stream_chunk,
    to_openai_request,
)
from switchyard.errors import ProtocolError, ValidationError
from switchyard.generators._http import HttpGeneratorBase
from switchyard.generators.base import GeneratorCapabilities, estimate_request_tokens

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.content import (
        CanonicalRequest,
        CanonicalResponse,
        EmbedRequest,
        TokenCount,
    )
    from switchyard.credentials import TokenSource

OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatibleGenerator(HttpGeneratorBase):
    """Chat completions with SSE streaming; embeddings via ``/embeddings``."""

    provider = "openai"

    def __init__(
        self,
        tokens: TokenSource,
        *,
        base_url: str = OPENAI_BASE_URL,
        embedding_model: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(tokens, base_url=base_url, **kwargs)
        self._embedding_model = embedding_model

    @property
    def capabilities(self) -> GeneratorCapabilities:
        return GeneratorCapabilities(
            streaming=True, embeddings=True, native_token_count=False
        )

    def _auth_headers(self, token: str) -> dict[str, str]:
        if not token:
            return {}
        return {"authorization": f"Bearer {token}"}

    def _body(self, request: CanonicalRequest, *, stream: bool) -> dict[str, Any]:
        body = to_openai_request(request, model=request.model or self._model)
        body["stream"] = stream
        if stream:
            body["stream_options"] = {"include_usage": True}
        return body

    async def generate_content(self, request: CanonicalRequest) -> CanonicalResponse:
        body = self._body(request, stream=False)
        payload = await self._post_json("chat/completions", body, phase="generate")
        return from_openai_response(payload)

    async def generate_content_stream(
        self, request: CanonicalRequest
    ) -> AsyncIterator[CanonicalResponse]:
        body = self._body(request, stream=True)
        async with aclosing(self._stream_payloads("chat/completions", body)) as payloads:
            async for payload in payloads:
                chunk = from_openai_stream_chunk(payload)
                if chunk is not None:
                    yield chunk

    async def count_tokens(self, request: CanonicalRequest) -> TokenCount:
        """Length-based estimate; compatible endpoints expose no counter."""
        return estimate_request_tokens(request)

    async def embed_content(self, request: EmbedRequest) -> EmbedResult:
        model = request.model or self._embedding_model or self._model
        if not model:
            raise ValidationError(
                "An embedding model is required",
                hint="Set EmbedRequest.model or pass embedding_model=...",
            )
        if not request.texts:
            return EmbedResult(embeddings=())

        payload = await self._post_json(
            "embeddings",
            {"model": model, "input": list(request.texts)},
            phase="embed",
        )
        data = payload.get("data")
        if not isinstance(data, list) or len(data) != len(request.texts):
            raise ProtocolError(
                "Embedding response does not match the number of inputs",
                provider=self.provider,
                phase="embed",
            )
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        usage = payload.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens")
        return EmbedResult(
            embeddings=tuple(
                tuple(float(v) for v in item.get("embedding", ())) for item in ordered
            ),
            usage=Usage(input_tokens=int(prompt_tokens), output_tokens=0)
            if isinstance(prompt_tokens, int)
            else None,
        )
