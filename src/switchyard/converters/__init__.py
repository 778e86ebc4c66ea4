"""Protocol converters between the canonical content model and wire formats.

The dispatch functions below pick the per-format converter by wire name
(``"anthropic"``, ``"openai"`` or ``"cli"``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from switchyard.converters._common import (
    DEFAULT_MAX_TOKENS,
    resolve_max_tokens,
    validate_generation_config,
)
from switchyard.converters.anthropic import (
    from_anthropic_response,
    from_anthropic_stream_event,
    stream_input_tokens,
    to_anthropic_request,
)
from switchyard.converters.cli import (
    from_cli_result,
    from_cli_stream_event,
    render_prompt,
)
from switchyard.converters.openai import (
    from_openai_response,
    from_openai_stream_chunk,
    to_openai_request,
)
from switchyard.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from switchyard.content import CanonicalRequest, CanonicalResponse

WireFormat = Literal["anthropic", "openai", "cli"]
WIRE_FORMATS: tuple[str, ...] = ("anthropic", "openai", "cli")


def _unknown_wire(wire: str) -> ConfigurationError:
    return ConfigurationError(
        f"Unknown wire format: {wire!r}",
        hint=f"Supported wire formats: {', '.join(WIRE_FORMATS)}",
    )


def to_provider_request(
    request: CanonicalRequest, wire: WireFormat, *, model: str | None = None
) -> dict[str, Any] | str:
    """Convert *request* into the body for *wire*.

    The CLI format returns the rendered prompt string rather than a dict.
    """
    if wire == "anthropic":
        return to_anthropic_request(request, model=model)
    if wire == "openai":
        return to_openai_request(request, model=model)
    if wire == "cli":
        return render_prompt(request)
    raise _unknown_wire(wire)


def from_provider_response(
    payload: Mapping[str, Any], wire: WireFormat
) -> CanonicalResponse:
    """Convert a complete provider response body."""
    if wire == "anthropic":
        return from_anthropic_response(payload)
    if wire == "openai":
        return from_openai_response(payload)
    if wire == "cli":
        return from_cli_result(payload)
    raise _unknown_wire(wire)


def from_provider_stream_chunk(
    chunk: Mapping[str, Any],
    wire: WireFormat,
    *,
    text_seen: bool = False,
    input_tokens: int | None = None,
) -> CanonicalResponse | None:
    """Convert one decoded stream payload; None means nothing to emit.

    For the CLI format *chunk* is the raw line object (its ``type`` field is
    the frame kind) and *text_seen* tells whether delta text already went out.
    For Anthropic, *input_tokens* is the count from the stream's
    ``message_start``; it completes the usage on the terminal chunk.
    """
    if wire == "anthropic":
        return from_anthropic_stream_event(chunk, input_tokens=input_tokens)
    if wire == "openai":
        return from_openai_stream_chunk(chunk)
    if wire == "cli":
        return from_cli_stream_event(
            str(chunk.get("type", "")), chunk, text_seen=text_seen
        )
    raise _unknown_wire(wire)


__all__ = [
    "DEFAULT_MAX_TOKENS",
    "WIRE_FORMATS",
    "WireFormat",
    "from_anthropic_response",
    "from_anthropic_stream_event",
    "from_cli_result",
    "from_cli_stream_event",
    "from_openai_response",
    "from_openai_stream_chunk",
    "from_provider_response",
    "from_provider_stream_chunk",
    "render_prompt",
    "resolve_max_tokens",
    "stream_input_tokens",
    "to_anthropic_request",
    "to_openai_request",
    "to_provider_request",
    "validate_generation_config",
]
