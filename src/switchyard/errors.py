"""Exception hierarchy for Switchyard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchyardError):
    """Configuration validation or resolution failed."""


class ValidationError(SwitchyardError):
    """Request parameters are malformed. Raised before any transport call."""


class UnsupportedOperationError(SwitchyardError):
    """The provider does not offer this capability (e.g. embeddings)."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        operation: str | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.operation = operation
        self.provider = provider


class APIError(SwitchyardError):
    """Provider call failed.

    Carries enough context (provider, phase, status, provider error type) for
    callers to render an actionable message and for retry code to decide
    without substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        phase: str | None = None,
        error_type: str | None = None,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase
        self.error_type = error_type


class AuthenticationError(APIError):
    """Credentials are missing, expired or rejected."""


class TransportError(APIError):
    """Network or process failure, including timeouts."""


class RateLimitError(TransportError):
    """Rate limit exceeded (HTTP 429)."""


class CliNotFoundError(TransportError):
    """The vendor CLI binary could not be found. Never retried."""


class ProtocolError(APIError):
    """Provider payload was malformed or unexpected."""


class NoStreamBodyError(ProtocolError):
    """A streaming call returned no body to read."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc*, then every exception reachable through causes and contexts.

    Each exception is visited once, so cyclic chains terminate.
    """
    pending = [exc]
    visited: set[int] = set()
    while pending:
        current = pending.pop()
        if id(current) in visited:
            continue
        visited.add(id(current))
        yield current
        pending.extend(
            linked
            for linked in (current.__context__, current.__cause__)
            if linked is not None
        )
