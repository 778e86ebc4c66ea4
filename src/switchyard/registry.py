"""Provider catalog, nickname resolution and auth-type mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Literal

from switchyard.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

ProviderKind = Literal["universal-gateway", "direct-api", "plan-based", "local"]
AuthMode = Literal["api-key", "oauth-personal", "none", "optional-key"]

# Providers whose OAuth flow goes through the Claude subscription credentials.
SUBSCRIPTION_PLAN_PROVIDERS: frozenset[str] = frozenset({"claude-code-max", "anthropic"})


class AuthType(str, Enum):
    """How a generator authenticates and which wire it speaks."""

    ANTHROPIC_OAUTH = "anthropic-oauth"
    ANTHROPIC_API_KEY = "anthropic-api-key"
    CLAUDE_CLI = "claude-cli"
    OPENAI_COMPATIBLE = "openai"
    LOCAL_LMSTUDIO = "local-lmstudio"
    LOCAL_OLLAMA = "local-ollama"
    GOOGLE_OAUTH = "oauth-personal"
    GEMINI_API_KEY = "gemini-api-key"


@dataclass(frozen=True)
class RateLimits:
    """Published plan limits (informational)."""

    weekly: int | None = None
    rolling: int | None = None
    window_hours: int | None = None


@dataclass(frozen=True)
class ProviderDescriptor:
    """One catalog entry. ``models`` maps nickname to full model id."""

    key: str
    display_name: str
    kind: ProviderKind
    auth_mode: AuthMode
    base_url: str | None = None
    api_key_env: str | None = None
    models: Mapping[str, str] = field(default_factory=dict)
    rate_limits: RateLimits | None = None
    features: tuple[str, ...] = ()
    health_check: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "models", MappingProxyType(dict(self.models)))
        object.__setattr__(self, "features", tuple(self.features))


class ProviderRegistry(Mapping[str, ProviderDescriptor]):
    """Read-only mapping of provider key to descriptor."""

    def __init__(self, descriptors: Iterable[ProviderDescriptor] = ()) -> None:
        self._entries: dict[str, ProviderDescriptor] = {d.key: d for d in descriptors}

    def __getitem__(self, key: str) -> ProviderDescriptor:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ProviderRegistry({sorted(self._entries)!r})"

    def require(self, key: str) -> ProviderDescriptor:
        """Return the descriptor for *key* or raise ``ConfigurationError``."""
        try:
            return self._entries[key]
        except KeyError:
            raise ConfigurationError(
                f"Unknown provider: {key!r}",
                hint=f"Known providers: {', '.join(sorted(self._entries))}",
            ) from None

    def replace(self, descriptor: ProviderDescriptor) -> ProviderRegistry:
        """Return a new registry with *descriptor* added or swapped in."""
        entries = dict(self._entries)
        entries[descriptor.key] = descriptor
        return ProviderRegistry(entries.values())


def default_providers(local_host: str = "localhost") -> ProviderRegistry:
    """Build the built-in catalog; local endpoints point at *local_host*."""
    return ProviderRegistry(
        (
            ProviderDescriptor(
                key="openrouter",
                display_name="OpenRouter (400+ Models)",
                kind="universal-gateway",
                auth_mode="api-key",
                base_url="https://openrouter.ai/api/v1",
                api_key_env="OPENROUTER_API_KEY",
                models={
                    "claude-sonnet-4": "anthropic/claude-sonnet-4",
                    "claude-3.5-sonnet": "anthropic/claude-3.5-sonnet",
                    "gpt-4": "openai/gpt-4",
                    "gpt-4-turbo": "openai/gpt-4-turbo",
                    "gemini-2.5-pro": "google/gemini-2.5-pro-preview",
                    "qwen3-32b": "qwen/qwen3-32b:free",
                    "qwen3-coder": "qwen/qwen3-coder",
                    "4bdev": "qwen/qwen3-4b-2507",
                },
                features=("fallback-routing", "usage-analytics", "credit-limits"),
            ),
            ProviderDescriptor(
                key="openai",
                display_name="OpenAI API Direct",
                kind="direct-api",
                auth_mode="api-key",
                base_url="https://api.openai.com/v1",
                api_key_env="OPENAI_API_KEY",
                models={
                    "gpt-4": "gpt-4",
                    "gpt-4-turbo": "gpt-4-turbo",
                    "gpt-3.5-turbo": "gpt-3.5-turbo",
                },
            ),
            ProviderDescriptor(
                key="anthropic",
                display_name="Anthropic API Direct",
                kind="direct-api",
                auth_mode="api-key",
                base_url="https://api.anthropic.com/v1",
                api_key_env="ANTHROPIC_API_KEY",
                models={
                    "sonnet": "claude-sonnet-4-20250514",
                    "opus": "claude-opus-4-1-20250805",
                    "haiku": "claude-3-haiku-20240307",
                },
            ),
            ProviderDescriptor(
                key="claude-code-max",
                display_name="Claude Code Max",
                kind="plan-based",
                auth_mode="oauth-personal",
                base_url="https://api.anthropic.com/v1",
                models={
                    "claude-sonnet-4": "claude-sonnet-4-20250514",
                    "claude-opus": "claude-3-opus-20240229",
                    "claude-haiku": "claude-3-haiku-20240307",
                },
                rate_limits=RateLimits(weekly=1000, rolling=100, window_hours=24),
                features=("multimodal", "coding-focused", "large-context"),
            ),
            ProviderDescriptor(
                key="gemini",
                display_name="Google Gemini API",
                kind="direct-api",
                auth_mode="api-key",
                base_url="https://generativelanguage.googleapis.com/v1beta/openai",
                api_key_env="GEMINI_API_KEY",
                models={
                    "gemini-1.5-pro": "gemini-1.5-pro",
                    "gemini-2.0-flash": "gemini-2.0-flash",
                },
            ),
            ProviderDescriptor(
                key="qwen-direct",
                display_name="Qwen API Direct",
                kind="direct-api",
                auth_mode="api-key",
                base_url="https://qwen.ai/api/v1",
                api_key_env="QWEN_API_KEY",
                models={"qwen3-32b": "qwen3-32b-instruct", "qwen3-coder": "qwen3-coder"},
                features=("multilingual", "coding-focused"),
            ),
            ProviderDescriptor(
                key="ollama",
                display_name="Ollama Local Models",
                kind="local",
                auth_mode="none",
                base_url=f"http://{local_host}:11434/v1",
                models={
                    "llama3.1": "llama3.1",
                    "qwen3-coder": "qwen3-coder",
                    "codellama": "codellama",
                },
                health_check="/api/tags",
            ),
            ProviderDescriptor(
                key="lmstudio",
                display_name="LM Studio Local Models",
                kind="local",
                auth_mode="optional-key",
                base_url=f"http://{local_host}:1234/v1",
                models={"local-model": "local-model"},
                health_check="/models",
            ),
        )
    )


DEFAULT_PROVIDERS = default_providers()


def resolve_model(
    name: str,
    provider: ProviderDescriptor | None,
    profiles: Mapping[str, str] | None = None,
) -> str:
    """Resolve a nickname to a full model id.

    The provider's nickname map wins, then profile nicknames; anything else is
    treated as already fully qualified and returned unchanged.
    """
    if provider is not None and name in provider.models:
        resolved = provider.models[name]
        logger.debug("Resolved %s to %s via provider %s", name, resolved, provider.key)
        return resolved
    if profiles and name in profiles:
        resolved = profiles[name]
        logger.debug("Resolved %s to %s via model profiles", name, resolved)
        return resolved
    return name


def auth_type_for(descriptor: ProviderDescriptor) -> AuthType:
    """Map a provider's auth mode to the generator auth type.

    Every ``api-key``, ``none`` and ``optional-key`` provider, Anthropic
    included, goes through the OpenAI-compatible flow. The native Anthropic
    API-key generator is reached only through an explicit
    ``Config.auth_type`` with no provider selected.
    """
    if descriptor.auth_mode == "oauth-personal":
        if descriptor.key in SUBSCRIPTION_PLAN_PROVIDERS:
            return AuthType.ANTHROPIC_OAUTH
        return AuthType.GOOGLE_OAUTH
    return AuthType.OPENAI_COMPATIBLE
