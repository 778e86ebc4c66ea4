"""Bounded async retry and the one-shot authentication retry envelope.

``retry_async`` with a ``RetryPolicy`` is the subprocess path's backoff;
its decisions read structured attributes of ``APIError`` and never match on
message text. ``call_with_auth_retry`` is the only retry on the HTTP path: it
retries exactly once after forcing a credential refresh, and only for
authentication failures.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from switchyard._errors import auth_hint, is_auth_error
from switchyard.errors import APIError, AuthenticationError, CliNotFoundError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from switchyard.credentials import TokenSource

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a failed provider call is repeated.

    Delays grow geometrically from ``initial_delay_s`` and are capped at
    ``max_delay_s``; with ``jitter`` the actual wait is drawn uniformly from
    ``[0, cap]``. ``max_elapsed_s`` bounds the total time spent waiting.
    """

    max_attempts: int = 2
    initial_delay_s: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    max_elapsed_s: float | None = 30.0

    def __post_init__(self) -> None:
        checks = (
            ("max_attempts", self.max_attempts >= 1, "at least 1"),
            ("initial_delay_s", self.initial_delay_s >= 0, "non-negative"),
            ("backoff_multiplier", self.backoff_multiplier > 0, "positive"),
            ("max_delay_s", self.max_delay_s >= 0, "non-negative"),
            (
                "max_elapsed_s",
                self.max_elapsed_s is None or self.max_elapsed_s >= 0,
                "non-negative or None",
            ),
        )
        for name, ok, expectation in checks:
            if not ok:
                raise ValueError(
                    f"RetryPolicy.{name} must be {expectation}, got {getattr(self, name)!r}"
                )

    def delay_for(self, retry_index: int) -> float:
        """Wait before retry number *retry_index* (1-based)."""
        return compute_backoff_delay(self, retry_index=retry_index)


def _server_requested_delay(exc: BaseException) -> float | None:
    """``Retry-After`` carried on an ``APIError``, when usable."""
    seconds = getattr(exc, "retry_after_s", None) if isinstance(exc, APIError) else None
    if isinstance(seconds, (int, float)) and seconds >= 0:
        return float(seconds)
    return None


def should_retry_subprocess(exc: BaseException) -> bool:
    """Return True when a CLI invocation failure should be retried.

    Process failures (non-zero exit, timeout, unparsable output) are retried.
    A missing binary, an authentication failure, an error explicitly marked
    non-retryable and cancellation are not.
    """
    if isinstance(exc, (asyncio.CancelledError, CliNotFoundError, AuthenticationError)):
        return False
    if isinstance(exc, APIError):
        return exc.retryable is not False
    return isinstance(exc, (TimeoutError, OSError))


def compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    """Delay before retry number *retry_index* (1-based)."""
    exponent = max(retry_index, 1) - 1
    cap = min(policy.max_delay_s, policy.initial_delay_s * policy.backoff_multiplier**exponent)
    if cap <= 0:
        return 0.0
    return random.uniform(0.0, cap) if policy.jitter else cap  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_subprocess,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``factory()`` until it succeeds or the policy gives up.

    The last failure propagates unchanged. A server-requested delay
    (``retry_after_s``) raises the computed backoff, and the wait never
    overruns ``policy.max_elapsed_s``.
    """
    deadline = None if policy.max_elapsed_s is None else time.monotonic() + policy.max_elapsed_s
    attempt = 0
    while True:
        attempt += 1
        try:
            return await factory()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            wait = policy.delay_for(attempt)
            requested = _server_requested_delay(exc)
            if requested is not None and requested > wait:
                wait = requested
            if deadline is not None:
                left = deadline - time.monotonic()
                if left <= 0:
                    raise
                wait = min(wait, left)
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                wait,
            )
            if wait > 0:
                await sleep(wait)


async def call_with_auth_retry(
    call: Callable[[str], Awaitable[T]],
    tokens: TokenSource,
    *,
    provider: str,
) -> T:
    """Run *call* with the current token, refreshing it once on an auth failure.

    Non-auth failures propagate unchanged. A failure of any kind on the retry
    raises a terminal ``AuthenticationError`` chained to that failure.
    """
    token = await tokens.get_access_token()
    try:
        return await call(token)
    except Exception as exc:
        if not is_auth_error(exc):
            raise
        logger.warning("%s rejected credentials; refreshing token and retrying once", provider)
        first = exc

    token = await tokens.get_access_token(force_refresh=True)
    try:
        return await call(token)
    except Exception as exc:
        raise AuthenticationError(
            f"{provider} authentication failed after token refresh: {exc}",
            hint=auth_hint(provider),
            retryable=False,
            provider=provider,
            phase=getattr(exc, "phase", None) or getattr(first, "phase", None),
            status_code=getattr(exc, "status_code", None),
        ) from exc
