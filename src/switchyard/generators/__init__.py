"""Generator implementations."""

from .anthropic_http import AnthropicHttpGenerator
from .base import (
    ContentGenerator,
    GeneratorCapabilities,
    estimate_request_tokens,
    estimate_tokens,
)
from .claude_cli import ClaudeCliGenerator, CliInfo, probe_cli
from .factory import create_content_generator
from .mock import MockGenerator
from .openai_compat import OpenAICompatibleGenerator

__all__ = [
    "AnthropicHttpGenerator",
    "ClaudeCliGenerator",
    "CliInfo",
    "ContentGenerator",
    "GeneratorCapabilities",
    "MockGenerator",
    "OpenAICompatibleGenerator",
    "create_content_generator",
    "estimate_request_tokens",
    "estimate_tokens",
    "probe_cli",
]
