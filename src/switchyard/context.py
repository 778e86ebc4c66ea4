"""Runtime context: the explicitly owned home of override and auth state.

The application creates one ``RuntimeContext`` and passes it wherever a
generator is built. Because the override state lives here rather than on
``Config``, a rebuilt or reloaded ``Config`` sees the same runtime model and
provider selection.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from switchyard.config import local_host
from switchyard.credentials import DEFAULT_SESSION_TTL_S, AuthManager
from switchyard.overrides import RuntimeOverrideState
from switchyard.profiles import load_profiles
from switchyard.registry import auth_type_for, default_providers, resolve_model

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from switchyard.config import Config
    from switchyard.credentials import ProviderCredentials
    from switchyard.registry import AuthType, ProviderDescriptor, ProviderRegistry

logger = logging.getLogger(__name__)


class RuntimeContext:
    """Owns the provider catalog, the auth manager and the override state."""

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        *,
        profiles: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry if registry is not None else default_providers(local_host())
        self.auth = AuthManager(self.registry, clock=clock)
        self.overrides = RuntimeOverrideState()
        self._profiles = dict(profiles) if profiles is not None else None

    @property
    def profiles(self) -> Mapping[str, str]:
        """Profile nicknames, read from disk on first use."""
        if self._profiles is None:
            self._profiles = load_profiles().nicknames()
        return self._profiles

    # Model selection

    def set_runtime_model(self, name: str) -> None:
        self.overrides.set_model(name)

    def clear_runtime_model(self) -> None:
        self.overrides.clear_model()

    def active_provider(self) -> ProviderDescriptor | None:
        """Session provider, then the runtime provider override, then the persistent selection."""
        session = self.auth.active_session()
        if session is not None:
            return self.registry.get(session.provider)
        override = self.overrides.current().provider
        if override is not None:
            descriptor = self.registry.get(override)
            if descriptor is not None:
                return descriptor
            logger.warning("Ignoring runtime provider override %r: unknown provider", override)
        return self.auth.active_provider()

    def get_effective_model(self, config: Config) -> str | None:
        """Runtime override (else ``config.model``) resolved against the active provider."""
        name = self.overrides.current().model or config.model
        if name is None:
            return None
        provider = self.active_provider()
        resolved = resolve_model(name, provider, self.profiles)
        logger.debug(
            "Effective model %s (requested %s, provider %s)",
            resolved,
            name,
            provider.key if provider else None,
        )
        return resolved

    # Provider and sessions

    def set_active_provider(self, key: str) -> bool:
        """Select *key* persistently and record it as the provider override."""
        if not self.auth.set_active_provider(key):
            return False
        self.overrides.set_provider(key)
        return True

    def create_test_session(
        self,
        provider: str,
        credentials: ProviderCredentials,
        ttl_s: float = DEFAULT_SESSION_TTL_S,
    ) -> str:
        return self.auth.create_test_session(provider, credentials, ttl_s)

    def activate_test_session(self, token: str) -> bool:
        """Activate *token*; its provider also becomes the provider override."""
        if not self.auth.activate_test_session(token):
            return False
        session = self.auth.active_session()
        if session is not None:
            self.overrides.set_provider(session.provider)
        return True

    def clear_session(self, token: str | None = None) -> None:
        self.auth.clear_session(token)

    def effective_auth_type(self, config: Config) -> AuthType | None:
        """Auth type of the active provider, else ``config.auth_type``."""
        provider = self.active_provider()
        if provider is None:
            return config.auth_type
        return auth_type_for(provider)

    def active_credentials(self) -> ProviderCredentials | None:
        """Session credentials, else the active provider's env API key."""
        session = self.auth.active_session()
        if session is not None:
            return session.credentials
        provider = self.active_provider()
        return self.auth.env_credentials(provider) if provider is not None else None

    def debug_info(self) -> dict[str, Any]:
        current = self.overrides.current()
        return {
            "runtime_model": current.model,
            "runtime_provider": current.provider,
            "has_runtime_override": not current.is_empty,
            "auth": self.auth.debug_info(),
        }
