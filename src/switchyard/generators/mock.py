"""Mock generator for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from switchyard.content import (
    CanonicalResponse,
    EmbedResult,
    FinishReason,
    Usage,
)
from switchyard.generators.base import (
    GeneratorCapabilities,
    estimate_request_tokens,
    estimate_tokens,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.content import CanonicalRequest, EmbedRequest, TokenCount

_ECHO_LIMIT = 100
_STREAM_SLICE = 16


class MockGenerator:
    """Generator for offline use without any network or subprocess.

    Answers are deterministic: the last user text, truncated and prefixed
    with ``echo:``.
    """

    provider = "mock"

    def __init__(self, *, model: str | None = None) -> None:
        self._model = model
        self.requests: list[CanonicalRequest] = []

    @property
    def model(self) -> str | None:
        return self._model

    @property
    def capabilities(self) -> GeneratorCapabilities:
        return GeneratorCapabilities(
            streaming=True, embeddings=True, native_token_count=False
        )

    def _answer(self, request: CanonicalRequest) -> str:
        user_turns = [t for t in request.turns if t.role == "user"]
        text = user_turns[-1].joined_text() if user_turns else ""
        return f"echo: {text[:_ECHO_LIMIT]}"

    def _usage(self, request: CanonicalRequest, answer: str) -> Usage:
        return Usage(
            input_tokens=estimate_request_tokens(request).total_tokens,
            output_tokens=estimate_tokens(answer),
        )

    async def generate_content(self, request: CanonicalRequest) -> CanonicalResponse:
        """Return a deterministic echo response."""
        self.requests.append(request)
        answer = self._answer(request)
        return CanonicalResponse.single(
            answer,
            FinishReason.STOP,
            usage=self._usage(request, answer),
            metadata={"model": request.model or self._model or "mock"},
        )

    async def generate_content_stream(
        self, request: CanonicalRequest
    ) -> AsyncIterator[CanonicalResponse]:
        """Yield the echo in fixed-size slices, then a terminal chunk."""
        self.requests.append(request)
        answer = self._answer(request)
        for start in range(0, len(answer), _STREAM_SLICE):
            yield CanonicalResponse.single(answer[start : start + _STREAM_SLICE])
        yield CanonicalResponse.single(
            "", FinishReason.STOP, usage=self._usage(request, answer)
        )

    async def count_tokens(self, request: CanonicalRequest) -> TokenCount:
        return estimate_request_tokens(request)

    async def embed_content(self, request: EmbedRequest) -> EmbedResult:
        """One small vector per text: length, token estimate, vowel share."""
        vectors = []
        for text in request.texts:
            vowels = sum(1 for ch in text.lower() if ch in "aeiou")
            share = vowels / len(text) if text else 0.0
            vectors.append((float(len(text)), float(estimate_tokens(text)), share))
        return EmbedResult(embeddings=tuple(vectors))

    async def aclose(self) -> None:
        return None
