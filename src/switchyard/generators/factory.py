"""Build the content generator for a Config and RuntimeContext."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from switchyard.config import api_key_for, claude_credentials_path, openai_base_url
from switchyard.credentials import (
    Credentials,
    OAuthTokenManager,
    StaticTokenSource,
    load_oauth_manager,
)
from switchyard.errors import ConfigurationError
from switchyard.generators.anthropic_http import ANTHROPIC_BASE_URL, AnthropicHttpGenerator
from switchyard.generators.claude_cli import ClaudeCliGenerator
from switchyard.generators.mock import MockGenerator
from switchyard.generators.openai_compat import OPENAI_BASE_URL, OpenAICompatibleGenerator
from switchyard.registry import AuthType

if TYPE_CHECKING:
    from switchyard.config import Config
    from switchyard.context import RuntimeContext
    from switchyard.credentials import ProviderCredentials, TokenSource
    from switchyard.generators.base import ContentGenerator
    from switchyard.registry import ProviderDescriptor

logger = logging.getLogger(__name__)

_LOCAL_PLACEHOLDER_KEYS = {
    AuthType.LOCAL_LMSTUDIO: ("lmstudio", "lm-studio"),
    AuthType.LOCAL_OLLAMA: ("ollama", "ollama"),
}


def _http_kwargs(config: Config, model: str | None) -> dict[str, Any]:
    return {"model": model, "timeout_s": config.timeout_s, "proxy": config.proxy}


def create_content_generator(
    config: Config, context: RuntimeContext
) -> ContentGenerator:
    """Return the generator for the effective auth type.

    The active provider (session first, then the persistent selection) decides
    the auth type; ``config.auth_type`` applies when none is selected. The
    model is the runtime override or ``config.model``, nickname-resolved.
    """
    model = context.get_effective_model(config)

    if config.use_mock:
        return MockGenerator(model=model)

    auth_type = context.effective_auth_type(config)
    provider = context.active_provider()
    logger.debug(
        "Creating generator: auth_type=%s provider=%s model=%s",
        auth_type.value if auth_type else None,
        provider.key if provider else None,
        model,
    )

    if auth_type is AuthType.ANTHROPIC_OAUTH:
        return _subscription_oauth(config, context, model)

    if auth_type is AuthType.ANTHROPIC_API_KEY:
        creds = context.active_credentials()
        api_key = (
            config.api_key
            or (creds.api_key if creds else None)
            or os.environ.get("ANTHROPIC_API_KEY")
        )
        if not api_key:
            raise ConfigurationError(
                "No Anthropic API key available",
                hint="Set ANTHROPIC_API_KEY or pass Config(api_key=...).",
            )
        return AnthropicHttpGenerator(
            StaticTokenSource(api_key),
            base_url=config.base_url
            or (creds.base_url if creds else None)
            or ANTHROPIC_BASE_URL,
            headers=dict(creds.headers) if creds else None,
            **_http_kwargs(config, model),
        )

    if auth_type is AuthType.CLAUDE_CLI:
        return ClaudeCliGenerator(
            cli_path=config.cli_path,
            model=model,
            timeout_s=config.timeout_s,
            retry=config.retry,
        )

    if auth_type is AuthType.OPENAI_COMPATIBLE:
        return _openai_compatible(config, context, provider, model)

    if auth_type in _LOCAL_PLACEHOLDER_KEYS:
        key, placeholder = _LOCAL_PLACEHOLDER_KEYS[auth_type]
        local = context.registry.require(key)
        return OpenAICompatibleGenerator(
            StaticTokenSource(config.api_key or placeholder),
            base_url=config.base_url or local.base_url,
            provider=key,
            **_http_kwargs(config, model),
        )

    raise ConfigurationError(
        f"Unsupported auth type: {auth_type.value if auth_type else None}",
        hint="Set Config(auth_type=...) or select a provider on the RuntimeContext.",
    )


def _subscription_oauth(
    config: Config, context: RuntimeContext, model: str | None
) -> ContentGenerator:
    """Session OAuth token when one is bound, else the subscription credentials file."""
    creds: ProviderCredentials | None = context.active_credentials()
    tokens: TokenSource
    if creds is not None and creds.oauth_token:
        logger.debug("Using the session's OAuth token for claude-code-max")
        tokens = OAuthTokenManager(Credentials(access_token=creds.oauth_token))
    else:
        tokens = load_oauth_manager(claude_credentials_path())
    return AnthropicHttpGenerator(
        tokens,
        base_url=config.base_url
        or (creds.base_url if creds else None)
        or ANTHROPIC_BASE_URL,
        provider="claude-code-max",
        headers=dict(creds.headers) if creds else None,
        **_http_kwargs(config, model),
    )


def _openai_compatible(
    config: Config,
    context: RuntimeContext,
    provider: ProviderDescriptor | None,
    model: str | None,
) -> ContentGenerator:
    creds = context.active_credentials()
    api_key = (
        config.api_key
        or (creds.api_key if creds else None)
        or (api_key_for(provider) if provider else None)
        or (os.environ.get("OPENAI_API_KEY") if provider is None else None)
    )
    key_optional = provider is not None and provider.auth_mode in ("none", "optional-key")
    if not api_key and not key_optional:
        name = provider.key if provider else "openai"
        env = provider.api_key_env if provider else "OPENAI_API_KEY"
        raise ConfigurationError(
            f"No API key available for {name}",
            hint=f"Set {env} or pass Config(api_key=...).",
        )
    base_url = (
        config.base_url
        or (creds.base_url if creds else None)
        or (provider.base_url if provider else None)
        or openai_base_url()
        or OPENAI_BASE_URL
    )
    return OpenAICompatibleGenerator(
        StaticTokenSource(api_key or ""),
        base_url=base_url,
        provider=provider.key if provider else "openai",
        headers=dict(creds.headers) if creds else None,
        **_http_kwargs(config, model),
    )
