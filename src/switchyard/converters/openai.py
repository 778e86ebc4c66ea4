"""OpenAI chat-completions wire format (also used by every compatible gateway)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from switchyard._errors import error_from_payload
from switchyard.content import Candidate, CanonicalResponse, OpaquePart, Part, TextPart
from switchyard.converters._common import (
    OPENAI_FINISH_REASONS,
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

WIRE = "openai"


def to_openai_request(
    request: CanonicalRequest, *, model: str | None = None
) -> dict[str, Any]:
    """Build a chat-completions body.

    System turns stay in the message list at their original position.
    """
    turns = prepare(request)
    model_id = model or request.model
    if not model_id:
        raise ValidationError(
            "A model id is required for the chat-completions request",
            hint="Set request.model or configure a default model.",
        )

    messages = [
        {"role": turn.role, "content": turn_text(turn, wire=WIRE)} for turn in turns
    ]
    config = request.config
    body: dict[str, Any] = {
        "model": model_id,
        "messages": messages,
        "max_tokens": resolve_max_tokens(config),
    }
    if config.temperature is not None:
        body["temperature"] = config.temperature
    if config.top_p is not None:
        body["top_p"] = config.top_p
    if config.top_k is not None:
        logger.debug("top_k is not part of chat completions; omitting it")
    if config.stop_sequences:
        body["stop"] = list(config.stop_sequences)
    if config.candidate_count > 1:
        body["n"] = config.candidate_count
    return body


def _raise_if_error(payload: Mapping[str, Any], *, phase: str) -> None:
    err = payload.get("error")
    if err is None:
        return
    if isinstance(err, dict):
        error_type = err.get("type") or err.get("code")
        raise error_from_payload(
            error_type if isinstance(error_type, str) else None,
            err.get("message"),
            provider=WIRE,
            phase=phase,
        )
    raise error_from_payload(None, str(err), provider=WIRE, phase=phase)


def _message_parts(message: Mapping[str, Any]) -> tuple[Part, ...]:
    parts: list[Part] = []
    content = message.get("content")
    if isinstance(content, str) and content:
        parts.append(TextPart(content))
    for call in message.get("tool_calls") or ():
        if isinstance(call, dict):
            parts.append(OpaquePart(call))
    return tuple(parts)


def from_openai_response(payload: Mapping[str, Any]) -> CanonicalResponse:
    """Convert a chat-completions response body, one candidate per choice."""
    if not isinstance(payload, dict):
        raise ProtocolError(
            "Chat-completions response is not a JSON object",
            provider=WIRE,
            phase="generate",
        )
    _raise_if_error(payload, phase="generate")

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ProtocolError(
            "Chat-completions response has no choices",
            provider=WIRE,
            phase="generate",
        )

    candidates = []
    for position, choice in enumerate(choices):
        message = choice.get("message") or {}
        candidates.append(
            Candidate(
                parts=_message_parts(message),
                finish_reason=map_finish_reason(
                    choice.get("finish_reason"), OPENAI_FINISH_REASONS
                ),
                index=int(choice.get("index", position)),
            )
        )

    usage = payload.get("usage") or {}
    metadata = {k: payload[k] for k in ("id", "model") if k in payload}
    return CanonicalResponse(
        candidates=tuple(candidates),
        usage=usage_from_counts(
            usage.get("prompt_tokens"), usage.get("completion_tokens")
        ),
        metadata=metadata,
    )


def from_openai_stream_chunk(chunk: Mapping[str, Any]) -> CanonicalResponse | None:
    """Convert one streamed chunk; returns None when it carries nothing."""
    _raise_if_error(chunk, phase="stream")

    candidates = []
    for position, choice in enumerate(chunk.get("choices") or ()):
        delta = choice.get("delta") or {}
        parts = _message_parts(delta)
        raw_finish = choice.get("finish_reason")
        if not parts and raw_finish is None:
            continue
        candidates.append(
            Candidate(
                parts=parts,
                finish_reason=map_finish_reason(raw_finish, OPENAI_FINISH_REASONS),
                index=int(choice.get("index", position)),
            )
        )

    usage_payload = chunk.get("usage") or {}
    usage = usage_from_counts(
        usage_payload.get("prompt_tokens"), usage_payload.get("completion_tokens")
    )
    if not candidates and usage is None:
        return None
    return CanonicalResponse(candidates=tuple(candidates), usage=usage)
