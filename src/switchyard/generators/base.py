"""Generator protocol: the one interface every backend implements."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from switchyard.content import TokenCount
from switchyard.errors import UnsupportedOperationError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.content import (
        CanonicalRequest,
        CanonicalResponse,
        EmbedRequest,
        EmbedResult,
    )

#: Characters per token for length-based estimates.
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class GeneratorCapabilities:
    """Feature flags exposed by generators."""

    streaming: bool = True
    embeddings: bool = False
    native_token_count: bool = False


@runtime_checkable
class ContentGenerator(Protocol):
    """Minimal generator protocol: generate, stream, count, embed."""

    async def generate_content(self, request: CanonicalRequest) -> CanonicalResponse:
        """Return one complete response."""
        ...

    def generate_content_stream(
        self, request: CanonicalRequest
    ) -> AsyncIterator[CanonicalResponse]:
        """Yield response slices; finite and not restartable."""
        ...

    async def count_tokens(self, request: CanonicalRequest) -> TokenCount:
        """Count (or estimate) input tokens."""
        ...

    async def embed_content(self, request: EmbedRequest) -> EmbedResult:
        """Embed texts, or raise ``UnsupportedOperationError``."""
        ...

    @property
    def capabilities(self) -> GeneratorCapabilities:
        """Feature capabilities for callers that branch on support."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...


def estimate_tokens(text: str) -> int:
    """Length-based approximation: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_request_tokens(request: CanonicalRequest) -> TokenCount:
    return TokenCount(
        total_tokens=math.ceil(request.text_length() / CHARS_PER_TOKEN),
        estimated=True,
    )


def unsupported_embeddings(provider: str) -> UnsupportedOperationError:
    return UnsupportedOperationError(
        f"Embeddings are not supported by {provider}",
        hint="Use an OpenAI-compatible provider for embeddings.",
        operation="embed_content",
        provider=provider,
    )
