"""Shared provider-side error helpers.

Generators map transport failures into the ``APIError`` family here so the
authentication envelope and the subprocess retry loop can decide on stable
attributes (status code, provider error type) rather than on raw exceptions.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import httpx

from switchyard._http import AUTH_ERROR_TYPES, AUTH_STATUS_CODES, RETRYABLE_STATUS_CODES
from switchyard.errors import (
    APIError,
    AuthenticationError,
    ProtocolError,
    RateLimitError,
    TransportError,
    _walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

# Message fragments that indicate a rejected credential when no status code
# or structured error type is available (e.g. CLI error text).
_AUTH_VOCABULARY: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "invalid api key",
    "invalid x-api-key",
    "invalid access token",
    "token expired",
    "authentication",
    "access denied",
)

_RATE_LIMIT_TYPES = frozenset({"rate_limit_error", "rate_limit_exceeded"})
_OVERLOADED_TYPES = frozenset({"overloaded_error", "api_error", "server_error"})

_LOGIN_HINTS: dict[str, str] = {
    "claude-code-max": 'Run "claude login" to refresh your subscription credentials.',
    "claude-cli": 'Run "claude login" to refresh your subscription credentials.',
    "anthropic": "Check ANTHROPIC_API_KEY or re-authenticate.",
    "openai": "Check OPENAI_API_KEY.",
    "openrouter": "Check OPENROUTER_API_KEY.",
    "gemini": "Check GEMINI_API_KEY.",
    "qwen-direct": "Check QWEN_API_KEY.",
}


def auth_hint(provider: str | None) -> str:
    """Return a re-authentication hint for *provider*."""
    if provider and provider in _LOGIN_HINTS:
        return _LOGIN_HINTS[provider]
    return "Check credentials/permissions and re-authenticate."


def _http_status(value: object) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def extract_status_code(exc: BaseException) -> int | None:
    """First HTTP status found on *exc* or its chain.

    Checks ``status_code``, then ``status``, then ``response.status_code`` of
    each linked exception (``httpx.HTTPStatusError`` carries only the last).
    """
    for linked in _walk_exception_chain(exc):
        candidates = (
            getattr(linked, "status_code", None),
            getattr(linked, "status", None),
            getattr(getattr(linked, "response", None), "status_code", None),
        )
        for candidate in candidates:
            status = _http_status(candidate)
            if status is not None:
                return status
    return None


def parse_error_body(body: str | bytes) -> tuple[str | None, str | None]:
    """Return ``(error_type, message)`` from a provider JSON error body.

    Understands the Anthropic shape ``{"type": "error", "error": {...}}`` and
    the OpenAI shape ``{"error": {"type": ..., "code": ..., "message": ...}}``.
    Non-JSON bodies yield ``(None, None)``.
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None, None
    if not isinstance(data, dict):
        return None, None
    error = data.get("error")
    if isinstance(error, dict):
        error_type = error.get("type") or error.get("code")
        message = error.get("message")
        return (
            error_type if isinstance(error_type, str) else None,
            message if isinstance(message, str) else None,
        )
    if isinstance(error, str):
        return None, error
    return None, None


def _mentions_auth_failure(message: str) -> bool:
    lowered = message.lower()
    if any(fragment in lowered for fragment in _AUTH_VOCABULARY):
        return True
    return "token" in lowered and "expired" in lowered


def is_auth_error(exc: BaseException) -> bool:
    """Return True when *exc* is an authentication-class failure.

    Checks, in order: the exception type, HTTP 401/403, a provider-reported
    authentication/permission error type, and finally auth vocabulary in the
    message text.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    for e in _walk_exception_chain(exc):
        if isinstance(e, AuthenticationError):
            return True
        if isinstance(e, APIError) and e.error_type in AUTH_ERROR_TYPES:
            return True
    status_code = extract_status_code(exc)
    if status_code in AUTH_STATUS_CODES:
        return True
    return _mentions_auth_failure(str(exc))


def error_from_payload(
    error_type: str | None,
    message: str | None,
    *,
    provider: str,
    phase: str,
    status_code: int | None = None,
    retry_after_s: float | None = None,
) -> APIError:
    """Classify a provider-reported error into the ``APIError`` family."""
    text = message or "unknown error"
    status_note = f" (status={status_code})" if status_code is not None else ""
    type_note = f" [{error_type}]" if error_type else ""
    full = f"{provider} {phase} failed{status_note}{type_note}: {text}"
    kwargs: dict[str, Any] = {
        "status_code": status_code,
        "provider": provider,
        "phase": phase,
        "error_type": error_type,
        "retry_after_s": retry_after_s,
    }

    if (
        status_code in AUTH_STATUS_CODES
        or error_type in AUTH_ERROR_TYPES
        or (status_code is None and error_type is None and _mentions_auth_failure(text))
    ):
        return AuthenticationError(
            full, hint=auth_hint(provider), retryable=False, **kwargs
        )
    if status_code == 429 or error_type in _RATE_LIMIT_TYPES:
        return RateLimitError(full, retryable=True, **kwargs)
    if status_code is not None and status_code in RETRYABLE_STATUS_CODES:
        return TransportError(full, retryable=True, **kwargs)
    if error_type in _OVERLOADED_TYPES:
        return TransportError(full, retryable=True, **kwargs)
    if status_code is not None:
        return TransportError(full, retryable=False, **kwargs)
    return ProtocolError(full, retryable=False, **kwargs)


def error_from_response(
    status_code: int,
    body: str | bytes,
    *,
    provider: str,
    phase: str,
    headers: Mapping[str, str] | None = None,
) -> APIError:
    """Map a non-2xx HTTP response into a classified ``APIError``."""
    error_type, message = parse_error_body(body)
    if message is None:
        raw = body.decode("utf-8", "replace") if isinstance(body, bytes) else body
        message = raw.strip()[:500] or "empty response body"
    return error_from_payload(
        error_type,
        message,
        provider=provider,
        phase=phase,
        status_code=status_code,
        retry_after_s=parse_retry_after(headers),
    )


def wrap_transport_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
) -> APIError:
    """Map low-level transport exceptions into ``APIError`` with context."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    msg = message or f"{provider} {phase} failed"
    cause = str(exc) or type(exc).__name__

    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return TransportError(
            f"{msg}: timed out ({cause})",
            retryable=True,
            provider=provider,
            phase=phase,
        )
    if isinstance(exc, httpx.RequestError):
        return TransportError(
            f"{msg}: {cause}",
            retryable=True,
            provider=provider,
            phase=phase,
        )

    status_code = extract_status_code(exc)
    if status_code is not None:
        return error_from_payload(
            None, cause, provider=provider, phase=phase, status_code=status_code
        )
    return TransportError(
        f"{msg}: {cause}", retryable=False, provider=provider, phase=phase
    )


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Return the ``Retry-After`` delay in seconds, when given as a number."""
    if headers is None:
        return None
    raw = headers.get("retry-after") or headers.get("Retry-After")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
