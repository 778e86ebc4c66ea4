"""Anthropic Messages wire format."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from switchyard._errors import error_from_payload
from switchyard.content import (
    Candidate,
    CanonicalResponse,
    FinishReason,
    OpaquePart,
    Part,
    TextPart,
)
from switchyard.converters._common import (
    ANTHROPIC_FINISH_REASONS,
    map_finish_reason,
    prepare,
    resolve_max_tokens,
    turn_text,
    usage_from_counts,
)
from switchyard.errors import ProtocolError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from switchyard.content import CanonicalRequest

logger = logging.getLogger(__name__)

WIRE = "anthropic"

# Stream events that carry nothing the caller needs.
_SILENT_EVENTS = frozenset(
    {"message_start", "message_stop", "ping", "content_block_start", "content_block_stop"}
)


def to_anthropic_request(
    request: CanonicalRequest, *, model: str | None = None
) -> dict[str, Any]:
    """Build a Messages API body.

    System turns collapse into the top-level ``system`` string. Raises
    ``ValidationError`` when no user/assistant message remains.
    """
    turns = prepare(request)
    model_id = model or request.model
    if not model_id:
        raise ValidationError(
            "A model id is required for the Anthropic request",
            hint="Set request.model or configure a default model.",
        )

    system_parts: list[str] = []
    messages: list[dict[str, Any]] = []
    for turn in turns:
        text = turn_text(turn, wire=WIRE)
        if turn.role == "system":
            if text:
                system_parts.append(text)
            continue
        messages.append({"role": turn.role, "content": text})

    if not messages:
        raise ValidationError(
            "Anthropic requests need at least one user or assistant message",
            hint="Add a user turn; system text alone cannot be sent.",
        )

    config = request.config
    body: dict[str, Any] = {
        "model": model_id,
        "max_tokens": resolve_max_tokens(config),
        "messages": messages,
    }
    if system_parts:
        body["system"] = "\n\n".join(system_parts)
    if config.temperature is not None:
        body["temperature"] = config.temperature
    if config.top_p is not None:
        body["top_p"] = config.top_p
    if config.top_k is not None:
        body["top_k"] = config.top_k
    if config.stop_sequences:
        body["stop_sequences"] = list(config.stop_sequences)
    return body


def _parts_from_blocks(blocks: Any) -> tuple[Part, ...]:
    parts: list[Part] = []
    if not isinstance(blocks, list):
        return ()
    for block in blocks:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text":
            parts.append(TextPart(str(block.get("text", ""))))
        else:
            parts.append(OpaquePart(block))
    return tuple(parts)


def from_anthropic_response(payload: Mapping[str, Any]) -> CanonicalResponse:
    """Convert a Messages API response body."""
    if not isinstance(payload, dict):
        raise ProtocolError(
            "Anthropic response is not a JSON object", provider=WIRE, phase="generate"
        )
    if payload.get("type") == "error":
        err = payload.get("error") or {}
        raise error_from_payload(
            err.get("type"), err.get("message"), provider=WIRE, phase="generate"
        )

    usage = payload.get("usage") or {}
    metadata = {k: payload[k] for k in ("id", "model") if k in payload}
    return CanonicalResponse(
        candidates=(
            Candidate(
                parts=_parts_from_blocks(payload.get("content")),
                finish_reason=map_finish_reason(
                    payload.get("stop_reason"), ANTHROPIC_FINISH_REASONS
                ),
            ),
        ),
        usage=usage_from_counts(usage.get("input_tokens"), usage.get("output_tokens")),
        metadata=metadata,
    )


def stream_input_tokens(event: Mapping[str, Any]) -> int | None:
    """``input_tokens`` announced by a ``message_start`` event, if any."""
    if event.get("type") != "message_start":
        return None
    message = event.get("message") or {}
    count = (message.get("usage") or {}).get("input_tokens")
    return count if isinstance(count, int) else None


def from_anthropic_stream_event(
    event: Mapping[str, Any], *, input_tokens: int | None = None
) -> CanonicalResponse | None:
    """Convert one SSE event; returns None for events with no caller-visible content.

    ``message_delta`` reports only output tokens. Pass the count from the
    stream's ``message_start`` as *input_tokens* to get usage on the terminal
    chunk; without it the terminal chunk carries no usage.
    """
    kind = event.get("type")

    if kind == "content_block_delta":
        delta = event.get("delta") or {}
        if delta.get("type") == "text_delta" and delta.get("text"):
            return CanonicalResponse.single(str(delta["text"]), FinishReason.OTHER)
        return None

    if kind == "message_delta":
        delta = event.get("delta") or {}
        usage = event.get("usage") or {}
        reported_input = usage.get("input_tokens")
        return CanonicalResponse.single(
            "",
            map_finish_reason(delta.get("stop_reason"), ANTHROPIC_FINISH_REASONS),
            usage=usage_from_counts(
                input_tokens if reported_input is None else reported_input,
                usage.get("output_tokens"),
            ),
        )

    if kind == "error":
        err = event.get("error") or {}
        raise error_from_payload(
            err.get("type"), err.get("message"), provider=WIRE, phase="stream"
        )

    if kind not in _SILENT_EVENTS:
        logger.warning("Ignoring unknown Anthropic stream event %r", kind)
    return None
