"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, test doubles for
token sources and clocks, a fake vendor CLI, and automatic API test skipping.
Fixtures in the isolation section are autouse.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import stat
import sys

import pytest

from switchyard.content import CanonicalRequest, GenerationConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"

ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
OPENAI_MODEL = "gpt-4"

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeClock:
    """Manually advanced epoch clock for TTL and expiry tests."""

    now: float = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class RefreshingTokenSource:
    """Token source that hands out the next token on each forced refresh.

    Records how many times a refresh was requested so tests can assert the
    authentication envelope retried exactly once.
    """

    tokens: list[str] = field(default_factory=lambda: ["stale-token", "fresh-token"])
    is_oauth: bool = False
    refreshes: int = 0
    _index: int = 0

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        if force_refresh:
            self.refreshes += 1
            self._index = min(self._index + 1, len(self.tokens) - 1)
        return self.tokens[self._index]


@dataclass
class FakeCli:
    """Handle on the fake CLI executable and its state directory."""

    path: Path
    state: Path
    monkeypatch: pytest.MonkeyPatch

    def mode(self, mode: str) -> None:
        self.monkeypatch.setenv("FAKE_CLI_MODE", mode)

    @property
    def calls(self) -> int:
        counter = self.state / "calls"
        return int(counter.read_text()) if counter.exists() else 0

    def read(self, name: str) -> str:
        return (self.state / name).read_text()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def refreshing_tokens() -> RefreshingTokenSource:
    return RefreshingTokenSource()


@pytest.fixture
def fake_cli(tmp_path, monkeypatch) -> FakeCli:
    """Executable wrapper around ``fixtures/fake_claude_cli.py``.

    The wrapper runs the script with the current interpreter so the test
    does not depend on a real CLI installation.
    """
    state = tmp_path / "cli-state"
    state.mkdir()
    wrapper = tmp_path / "fake-claude"
    script = FIXTURES_DIR / "fake_claude_cli.py"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("FAKE_CLI_STATE", str(state))
    monkeypatch.setenv("FAKE_CLI_MODE", "ok")
    return FakeCli(path=wrapper, state=state, monkeypatch=monkeypatch)


def make_request(
    prompt: str = "Hello",
    *,
    system: str | None = None,
    model: str | None = None,
    **config: object,
) -> CanonicalRequest:
    """Build a request with an optional ``GenerationConfig``."""
    return CanonicalRequest.from_text(
        prompt,
        system=system,
        model=model,
        config=GenerationConfig(**config) if config else None,
    )


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_PROVIDER_ENV_PREFIXES = (
    "ANTHROPIC_",
    "GEMINI_",
    "OPENAI_",
    "OPENROUTER_",
    "QWEN_",
    "SWITCHYARD_",
)


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch, tmp_path):
    """Ensure a clean provider environment for each test.

    Clears provider keys and SWITCHYARD_* settings, and points the credential
    and profile files into the test's temporary directory.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_PROVIDER_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    for key in ("HTTPS_PROXY", "https_proxy", "FAKE_CLI_MODE", "FAKE_CLI_STATE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CLAUDE_CREDENTIALS_PATH", str(tmp_path / "no-credentials.json"))
    monkeypatch.setenv("SWITCHYARD_PROFILES_PATH", str(tmp_path / "no-profiles.json"))


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# API Test Configuration
# =============================================================================


@pytest.fixture
def anthropic_api_key():
    """Return ANTHROPIC_API_KEY or skip the test if unavailable."""
    key = os.getenv("ANTHROPIC_API_KEY")
    if not key:
        pytest.skip("ANTHROPIC_API_KEY not set")
    return key


@pytest.fixture
def openai_api_key():
    """Return OPENAI_API_KEY or skip the test if unavailable."""
    key = os.getenv("OPENAI_API_KEY")
    if not key:
        pytest.skip("OPENAI_API_KEY not set")
    return key
