from __future__ import annotations

import json
import logging

import pytest

from switchyard.errors import ConfigurationError
from switchyard.profiles import load_profiles
from switchyard.registry import (
    DEFAULT_PROVIDERS,
    AuthType,
    ProviderDescriptor,
    auth_type_for,
    default_providers,
    resolve_model,
)

pytestmark = pytest.mark.unit


def test_catalog_contains_every_builtin_provider() -> None:
    assert set(DEFAULT_PROVIDERS) == {
        "openrouter",
        "openai",
        "anthropic",
        "claude-code-max",
        "gemini",
        "qwen-direct",
        "ollama",
        "lmstudio",
    }


def test_local_providers_use_the_configured_host() -> None:
    registry = default_providers("gpu-box")
    assert registry["ollama"].base_url == "http://gpu-box:11434/v1"
    assert registry["lmstudio"].base_url == "http://gpu-box:1234/v1"


def test_descriptor_models_are_read_only() -> None:
    with pytest.raises(TypeError):
        DEFAULT_PROVIDERS["openai"].models["x"] = "y"  # type: ignore[index]


def test_require_unknown_provider_lists_known_ones() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        DEFAULT_PROVIDERS.require("nope")
    assert excinfo.value.hint is not None and "openrouter" in excinfo.value.hint


def test_replace_returns_a_new_registry() -> None:
    custom = ProviderDescriptor(
        key="ollama",
        display_name="Remote Ollama",
        kind="local",
        auth_mode="none",
        base_url="http://remote:11434/v1",
    )

    updated = DEFAULT_PROVIDERS.replace(custom)

    assert updated["ollama"].base_url == "http://remote:11434/v1"
    assert DEFAULT_PROVIDERS["ollama"].base_url == "http://localhost:11434/v1"
    assert len(updated) == len(DEFAULT_PROVIDERS)


# =============================================================================
# Nickname resolution
# =============================================================================


def test_4bdev_resolves_on_openrouter() -> None:
    assert resolve_model("4bdev", DEFAULT_PROVIDERS["openrouter"]) == "qwen/qwen3-4b-2507"


def test_provider_nickname_beats_profile_nickname() -> None:
    profiles = {"4bdev": "local/other"}
    assert resolve_model("4bdev", DEFAULT_PROVIDERS["openrouter"], profiles) == (
        "qwen/qwen3-4b-2507"
    )


def test_profile_nickname_applies_without_provider_match() -> None:
    assert resolve_model("fast", None, {"fast": "gpt-4-turbo"}) == "gpt-4-turbo"


def test_unknown_names_pass_through_unchanged() -> None:
    assert resolve_model("vendor/model-x", DEFAULT_PROVIDERS["openai"]) == "vendor/model-x"


# =============================================================================
# Auth-type mapping
# =============================================================================


def test_oauth_outside_subscription_family_maps_to_google() -> None:
    descriptor = ProviderDescriptor(
        key="gemini-personal", display_name="G", kind="plan-based", auth_mode="oauth-personal"
    )
    assert auth_type_for(descriptor) is AuthType.GOOGLE_OAUTH


@pytest.mark.parametrize("key", ["anthropic", "gemini", "openrouter", "qwen-direct", "openai"])
def test_api_key_providers_use_the_openai_compatible_flow(key) -> None:
    assert DEFAULT_PROVIDERS[key].auth_mode == "api-key"
    assert auth_type_for(DEFAULT_PROVIDERS[key]) is AuthType.OPENAI_COMPATIBLE


# =============================================================================
# Model profiles
# =============================================================================


def test_load_profiles_reads_camel_case_file(tmp_path) -> None:
    path = tmp_path / "profiles.json"
    path.write_text(
        json.dumps(
            {
                "models": [
                    {"nickname": "fast", "model": "gpt-4-turbo", "authType": "openai"},
                    {"nickname": "fast", "model": "ignored"},
                    {"nickname": "deep", "model": "claude-opus", "displayName": "Deep"},
                ],
                "current": "fast",
            }
        )
    )

    profiles = load_profiles(path)

    assert profiles.nicknames() == {"fast": "gpt-4-turbo", "deep": "claude-opus"}
    assert profiles.current == "fast"
    deep = profiles.find("deep")
    assert deep is not None and deep.display_name == "Deep"


def test_missing_profiles_file_is_empty(tmp_path) -> None:
    assert load_profiles(tmp_path / "absent.json").nicknames() == {}


def test_malformed_profiles_file_is_empty_with_warning(tmp_path, caplog) -> None:
    path = tmp_path / "profiles.json"
    path.write_text('{"models": [{"nickname": ""}]}')

    with caplog.at_level(logging.WARNING, logger="switchyard.profiles"):
        assert load_profiles(path).nicknames() == {}

    assert "malformed model profiles" in caplog.text
