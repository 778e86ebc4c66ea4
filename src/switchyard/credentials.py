"""Credential and session lifecycle.

Three pieces live here:

- token sources handed to generators (a static key, or the OAuth manager
  backed by the subscription CLI credentials file);
- ``AuthManager``, the one mutable slot that records which provider (or
  temporary test session) is active;
- session bookkeeping with lazy expiry against an injectable clock.

Token values never appear in logs or ``repr`` output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
import secrets
import time
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from switchyard._errors import auth_hint
from switchyard.config import api_key_for, claude_credentials_path
from switchyard.errors import AuthenticationError, ConfigurationError
from switchyard.registry import auth_type_for

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from switchyard.registry import AuthType, ProviderDescriptor, ProviderRegistry

logger = logging.getLogger(__name__)

#: Seconds before expiry at which a token counts as stale.
TOKEN_REFRESH_BUFFER_S = 30.0
DEFAULT_SESSION_TTL_S = 1800.0


def _redact(value: str | None) -> str | None:
    return "[REDACTED]" if value else None


# --- Credentials ---


@dataclass(frozen=True)
class Credentials:
    """OAuth credentials snapshot. ``expires_at`` is absolute epoch seconds."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at: float | None = None
    scope: str | None = None

    def expires_within(self, seconds: float, *, now: float) -> bool:
        """True when the token expires less than *seconds* from *now*."""
        if self.expires_at is None:
            return False
        return now > self.expires_at - seconds

    def __repr__(self) -> str:
        return (
            f"Credentials(access_token={_redact(self.access_token)!r}, "
            f"refresh_token={_redact(self.refresh_token)!r}, "
            f"token_type={self.token_type!r}, expires_at={self.expires_at!r}, "
            f"scope={self.scope!r})"
        )


@dataclass(frozen=True)
class ProviderCredentials:
    """Credentials bound to a session or resolved from the environment."""

    api_key: str | None = None
    base_url: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    oauth_token: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def __repr__(self) -> str:
        return (
            f"ProviderCredentials(api_key={_redact(self.api_key)!r}, "
            f"base_url={self.base_url!r}, headers={sorted(self.headers)!r}, "
            f"oauth_token={_redact(self.oauth_token)!r})"
        )


# --- Token sources ---


@runtime_checkable
class TokenSource(Protocol):
    """Anything that can hand a generator its current bearer/API token."""

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        """Return the current token, re-fetching it when *force_refresh*."""
        ...


class StaticTokenSource:
    """Fixed token (API keys and local placeholders). Refresh is a no-op."""

    is_oauth = False

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        del force_refresh
        return self._token

    def __repr__(self) -> str:
        return f"StaticTokenSource(token={_redact(self._token)!r})"


class _ClaudeOAuthBlock(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    access_token: str = Field(default="", alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_at_ms: float | None = Field(default=None, alias="expiresAt")
    scopes: list[str] = Field(default_factory=list)
    subscription_type: str | None = Field(default=None, alias="subscriptionType")


class _ClaudeCredentialsFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    claudeAiOauth: _ClaudeOAuthBlock | None = None  # noqa: N815


def read_claude_credentials(path: Path) -> Credentials | None:
    """Parse the subscription CLI credentials file.

    Returns None when the file is missing or carries no access token.
    Malformed files raise ``AuthenticationError``.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise AuthenticationError(
            f"Cannot read credentials file {path}: {exc}",
            hint=auth_hint("claude-code-max"),
            provider="claude-code-max",
            phase="credentials",
        ) from exc

    try:
        parsed = _ClaudeCredentialsFile.model_validate(json.loads(raw))
    except (ValueError, PydanticValidationError) as exc:
        raise AuthenticationError(
            f"Credentials file {path} is not valid: {exc}",
            hint=auth_hint("claude-code-max"),
            provider="claude-code-max",
            phase="credentials",
        ) from exc

    block = parsed.claudeAiOauth
    if block is None or not block.access_token:
        return None
    return Credentials(
        access_token=block.access_token,
        refresh_token=block.refresh_token,
        token_type="Bearer",
        expires_at=block.expires_at_ms / 1000.0 if block.expires_at_ms else None,
        scope=" ".join(block.scopes) if block.scopes else "user:inference user:profile",
    )


class OAuthTokenManager:
    """Holds the subscription OAuth credentials for one generator.

    A stale token (within ``TOKEN_REFRESH_BUFFER_S`` of expiry) is still
    returned; the provider decides, and the auth retry envelope handles the
    rejection by forcing a re-read of the credentials file.
    """

    is_oauth = True

    def __init__(
        self,
        credentials: Credentials | None = None,
        *,
        path: Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credentials = credentials
        self._path = path
        self._clock = clock

    def get_credentials(self) -> Credentials | None:
        """Immutable snapshot of the current credentials."""
        return self._credentials

    def set_credentials(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def clear(self) -> None:
        self._credentials = None

    def _reload(self) -> None:
        if self._path is None:
            return
        try:
            fresh = read_claude_credentials(self._path)
        except AuthenticationError as exc:
            logger.warning("Keeping current token; credentials reload failed: %s", exc)
            return
        if fresh is None:
            logger.warning("Keeping current token; %s has no access token", self._path)
            return
        self._credentials = fresh
        logger.debug("Reloaded OAuth credentials from %s", self._path)

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        if force_refresh:
            self._reload()
        creds = self._credentials
        if creds is None or not creds.access_token:
            raise AuthenticationError(
                "No OAuth access token available",
                hint=auth_hint("claude-code-max"),
                provider="claude-code-max",
                phase="credentials",
            )
        if creds.expires_within(TOKEN_REFRESH_BUFFER_S, now=self._clock()):
            logger.warning(
                "OAuth access token is expired or expires within %.0fs; using it anyway",
                TOKEN_REFRESH_BUFFER_S,
            )
        return creds.access_token

    def __repr__(self) -> str:
        return f"OAuthTokenManager(credentials={self._credentials!r}, path={self._path!r})"


def load_oauth_manager(
    path: Path | None = None, *, clock: Callable[[], float] = time.time
) -> OAuthTokenManager:
    """Load subscription credentials into a new ``OAuthTokenManager``.

    Raises ``AuthenticationError`` when the file is missing, carries no
    token, or the token is already expired.
    """
    cred_path = path or claude_credentials_path()
    creds = read_claude_credentials(cred_path)
    if creds is None:
        raise AuthenticationError(
            f"No subscription credentials found at {cred_path}",
            hint=auth_hint("claude-code-max"),
            provider="claude-code-max",
            phase="credentials",
        )
    if creds.expires_within(TOKEN_REFRESH_BUFFER_S, now=clock()):
        raise AuthenticationError(
            "Subscription credentials have expired",
            hint=auth_hint("claude-code-max"),
            provider="claude-code-max",
            phase="credentials",
        )
    return OAuthTokenManager(creds, path=cred_path, clock=clock)


# --- Sessions and the active-provider slot ---


@dataclass(frozen=True)
class Session:
    """Temporary credentials for one provider, valid until ``expires_at``."""

    provider: str
    credentials: ProviderCredentials
    expires_at: float
    token: str

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class ProviderStatus:
    """Snapshot of one provider as the auth manager sees it."""

    name: str
    status: str  # "active" | "testing" | "available"
    models_available: int
    is_temporary_session: bool = False


def _new_session_token() -> str:
    return f"session_{secrets.token_urlsafe(12)}"


class AuthManager:
    """Tracks the active provider and temporary test sessions.

    Expiry is checked lazily on every read: an expired active session is
    deleted and the selection falls back to the persistent provider.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._active_provider: str | None = None
        self._active_session: str | None = None

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    # Sessions

    def create_test_session(
        self,
        provider: str,
        credentials: ProviderCredentials,
        ttl_s: float = DEFAULT_SESSION_TTL_S,
    ) -> str:
        """Register temporary credentials for *provider* and return the token."""
        self._registry.require(provider)
        if ttl_s <= 0:
            raise ConfigurationError(
                f"Session ttl must be > 0, got {ttl_s}",
                hint="Pass ttl_s in seconds.",
            )
        token = _new_session_token()
        self._sessions[token] = Session(
            provider=provider,
            credentials=credentials,
            expires_at=self._clock() + ttl_s,
            token=token,
        )
        logger.debug("Created test session for %s, expires in %.0fs", provider, ttl_s)
        return token

    def _live_session(self, token: str | None) -> Session | None:
        if token is None:
            return None
        session = self._sessions.get(token)
        if session is None:
            if self._active_session == token:
                self._active_session = None
            return None
        if session.is_expired(self._clock()):
            self._drop_session(token)
            return None
        return session

    def _drop_session(self, token: str) -> None:
        if self._active_session == token:
            self._active_session = None
        if self._sessions.pop(token, None) is not None:
            logger.debug("Removed session %s", token[:12])

    def activate_test_session(self, token: str) -> bool:
        """Make *token* the active session; False when unknown or expired."""
        session = self._live_session(token)
        if session is None:
            self._drop_session(token)
            return False
        self._active_session = token
        self._active_provider = session.provider
        logger.debug("Activated test session for %s", session.provider)
        return True

    def active_session(self) -> Session | None:
        return self._live_session(self._active_session)

    def clear_session(self, token: str | None = None) -> None:
        """Delete *token*, or the active session when no token is given."""
        target = token or self._active_session
        if target is not None:
            self._drop_session(target)

    def cleanup_expired_sessions(self) -> int:
        """Delete every expired session and return how many were removed."""
        now = self._clock()
        expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
        for token in expired:
            self._drop_session(token)
        return len(expired)

    # Provider selection

    def set_active_provider(self, key: str) -> bool:
        """Persistently select *key*; clears any active session."""
        if key not in self._registry:
            return False
        self._active_provider = key
        self._active_session = None
        logger.debug("Set active provider: %s", key)
        return True

    def active_provider_key(self) -> str | None:
        session = self.active_session()
        if session is not None:
            return session.provider
        return self._active_provider

    def active_provider(self) -> ProviderDescriptor | None:
        key = self.active_provider_key()
        return self._registry.get(key) if key else None

    def active_credentials(self) -> ProviderCredentials | None:
        """Session credentials, else the active provider's env API key."""
        session = self.active_session()
        if session is not None:
            return session.credentials
        provider = self.active_provider()
        return self.env_credentials(provider) if provider is not None else None

    def env_credentials(self, provider: ProviderDescriptor) -> ProviderCredentials | None:
        """*provider*'s API key from the environment, with its base URL."""
        api_key = api_key_for(provider)
        if not api_key:
            return None
        return ProviderCredentials(api_key=api_key, base_url=provider.base_url)

    def effective_auth_type(self, fallback: AuthType | None = None) -> AuthType | None:
        provider = self.active_provider()
        if provider is None:
            return fallback
        return auth_type_for(provider)

    def provider_status(self, key: str) -> ProviderStatus | None:
        provider = self._registry.get(key)
        if provider is None:
            return None
        session = self.active_session()
        testing = session is not None and session.provider == key
        if testing:
            status = "testing"
        elif self._active_provider == key:
            status = "active"
        else:
            status = "available"
        return ProviderStatus(
            name=key,
            status=status,
            models_available=len(provider.models),
            is_temporary_session=testing,
        )

    def debug_info(self) -> dict[str, Any]:
        session = self.active_session()
        return {
            "active_provider": self._active_provider,
            "active_session": session.token[:12] if session else None,
            "total_providers": len(self._registry),
            "active_sessions": len(self._sessions),
        }
