"""Configuration: frozen Config plus environment-derived settings."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from switchyard.errors import ConfigurationError
from switchyard.registry import AuthType
from switchyard.retry import RetryPolicy

if TYPE_CHECKING:
    from switchyard.registry import ProviderDescriptor

load_dotenv()

DEFAULT_TIMEOUT_S = 120.0
DEFAULT_CLI_PATH = "claude"

_DEFAULT_CREDENTIALS_PATH = Path("~/.claude/.credentials.json")
_DEFAULT_PROFILES_PATH = Path("~/.qwen/model-profiles.json")


def local_host() -> str:
    """Host for LM Studio / Ollama endpoints (``SWITCHYARD_LOCAL_HOST``)."""
    return os.environ.get("SWITCHYARD_LOCAL_HOST") or "localhost"


def claude_credentials_path() -> Path:
    """Location of the subscription CLI credentials file."""
    raw = os.environ.get("CLAUDE_CREDENTIALS_PATH")
    return Path(raw).expanduser() if raw else _DEFAULT_CREDENTIALS_PATH.expanduser()


def profiles_path() -> Path:
    """Location of the persisted model-profile file."""
    raw = os.environ.get("SWITCHYARD_PROFILES_PATH")
    return Path(raw).expanduser() if raw else _DEFAULT_PROFILES_PATH.expanduser()


def api_key_for(descriptor: ProviderDescriptor) -> str | None:
    """API key for *descriptor* from its environment variable, if any."""
    if not descriptor.api_key_env:
        return None
    return os.environ.get(descriptor.api_key_env) or None


def openai_base_url() -> str | None:
    """``OPENAI_BASE_URL`` override for OpenAI-compatible endpoints."""
    return os.environ.get("OPENAI_BASE_URL") or None


def _parse_auth_type(raw: str | AuthType | None) -> AuthType | None:
    if raw is None or isinstance(raw, AuthType):
        return raw
    value = raw.strip()
    if not value:
        return None
    try:
        return AuthType(value)
    except ValueError:
        pass
    try:
        return AuthType[value.upper().replace("-", "_")]
    except KeyError:
        raise ConfigurationError(
            f"Unknown auth_type: {raw!r}",
            hint=f"Use one of: {', '.join(a.value for a in AuthType)}",
        ) from None


@dataclass(frozen=True)
class Config:
    """Immutable configuration for building content generators.

    The configured ``model`` is the base model; runtime overrides held by a
    ``RuntimeContext`` take precedence and survive rebuilding this object.

    Example:
        config = Config(model="claude-sonnet-4", auth_type=AuthType.CLAUDE_CLI)
    """

    model: str | None = None
    auth_type: AuthType | None = None
    #: Explicit credential; wins over session and environment keys.
    api_key: str | None = None
    base_url: str | None = None
    proxy: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    use_mock: bool = False
    cli_path: str = DEFAULT_CLI_PATH

    def __post_init__(self) -> None:
        """Normalize and validate configuration."""
        object.__setattr__(self, "auth_type", _parse_auth_type(self.auth_type))
        if isinstance(self.model, str):
            object.__setattr__(self, "model", self.model.strip() or None)

        if isinstance(self.timeout_s, bool) or not isinstance(
            self.timeout_s, (int, float)
        ):
            raise ConfigurationError(
                f"timeout_s must be a number, got {self.timeout_s!r}",
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds each provider call, in seconds.",
            )
        if not self.cli_path:
            raise ConfigurationError(
                "cli_path must not be empty",
                hint="Pass the vendor CLI executable name or path.",
            )

    @classmethod
    def from_env(cls, **overrides: object) -> Config:
        """Build a Config from ``SWITCHYARD_*`` variables and ``HTTPS_PROXY``."""
        values: dict[str, object] = {
            "model": os.environ.get("SWITCHYARD_MODEL") or None,
            "auth_type": os.environ.get("SWITCHYARD_AUTH_TYPE") or None,
            "proxy": os.environ.get("HTTPS_PROXY")
            or os.environ.get("https_proxy")
            or None,
        }
        raw_timeout = os.environ.get("SWITCHYARD_TIMEOUT_S")
        if raw_timeout:
            try:
                values["timeout_s"] = float(raw_timeout)
            except ValueError:
                raise ConfigurationError(
                    f"SWITCHYARD_TIMEOUT_S must be a number, got {raw_timeout!r}",
                ) from None
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        auth = self.auth_type.value if self.auth_type else None
        return (
            f"Config(model={self.model!r}, auth_type={auth!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, timeout_s={self.timeout_s}, "
            f"use_mock={self.use_mock})"
        )

    __repr__ = __str__
