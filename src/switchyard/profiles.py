"""Read-only access to the persisted model-profile file.

The file is written by the interactive command surface; this package only
reads it to resolve profile nicknames. A missing or unreadable file yields
an empty profile set.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from switchyard.config import profiles_path

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class ModelProfile(BaseModel):
    """One saved model profile."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    nickname: str = Field(min_length=1)
    model: str = Field(min_length=1)
    provider: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    auth_type: str | None = Field(default=None, alias="authType")
    base_url: str | None = Field(default=None, alias="baseUrl")
    description: str | None = None


class ModelProfiles(BaseModel):
    """Profile file contents."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    models: tuple[ModelProfile, ...] = ()
    current: str | None = None

    def nicknames(self) -> dict[str, str]:
        """Nickname to model id; the first profile wins on duplicates."""
        out: dict[str, str] = {}
        for profile in self.models:
            out.setdefault(profile.nickname, profile.model)
        return out

    def find(self, nickname: str) -> ModelProfile | None:
        return next((p for p in self.models if p.nickname == nickname), None)


def load_profiles(path: Path | None = None) -> ModelProfiles:
    """Load profiles from *path* (default: ``SWITCHYARD_PROFILES_PATH``)."""
    target = path or profiles_path()
    try:
        raw = target.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ModelProfiles()
    except OSError as exc:
        logger.warning("Cannot read model profiles at %s: %s", target, exc)
        return ModelProfiles()
    try:
        return ModelProfiles.model_validate_json(raw)
    except PydanticValidationError as exc:
        logger.warning("Ignoring malformed model profiles at %s: %s", target, exc)
        return ModelProfiles()
