"""Runtime model/provider override that outlives any one Config object."""

from __future__ import annotations

from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeOverride:
    """The current override pair; either side may be unset."""

    model: str | None = None
    provider: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.model is None and self.provider is None


class RuntimeOverrideState:
    """Holds at most one model and one provider override.

    Only the explicit setters and clearers change it; rebuilding or
    reloading configuration leaves it untouched.
    """

    def __init__(self) -> None:
        self._current = RuntimeOverride()

    def set_model(self, model: str) -> None:
        logger.debug("Setting runtime model override: %s", model)
        self._current = RuntimeOverride(model=model, provider=self._current.provider)

    def set_provider(self, provider: str) -> None:
        logger.debug("Setting runtime provider override: %s", provider)
        self._current = RuntimeOverride(model=self._current.model, provider=provider)

    def clear_model(self) -> None:
        self._current = RuntimeOverride(provider=self._current.provider)

    def clear_provider(self) -> None:
        self._current = RuntimeOverride(model=self._current.model)

    def clear(self) -> None:
        self._current = RuntimeOverride()

    def current(self) -> RuntimeOverride:
        return self._current
