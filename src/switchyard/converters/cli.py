"""Vendor CLI wire format: a rendered prompt in, JSON result objects out."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from switchyard._errors import error_from_payload
from switchyard.content import Candidate, CanonicalResponse, FinishReason, TextPart
from switchyard.converters._common import prepare, turn_text, usage_from_counts
from switchyard.errors import ProtocolError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from switchyard.content import CanonicalRequest

logger = logging.getLogger(__name__)

WIRE = "cli"
PROVIDER = "claude-cli"

_ROLE_LABELS = {"system": "System", "user": "User", "assistant": "Assistant"}
_METADATA_KEYS = {
    "total_cost_usd": "cost_usd",
    "duration_ms": "duration_ms",
    "session_id": "session_id",
}


def render_prompt(request: CanonicalRequest) -> str:
    """Render turns as ``[Role]: text`` blocks separated by a blank line."""
    blocks = []
    for turn in prepare(request):
        text = turn_text(turn, wire=WIRE)
        if text:
            blocks.append(f"[{_ROLE_LABELS[turn.role]}]: {text}")
    return "\n\n".join(blocks)


def _result_metadata(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {
        name: payload[key] for key, name in _METADATA_KEYS.items() if key in payload
    }


def _result_usage(payload: Mapping[str, Any]) -> Any:
    usage = payload.get("usage") or {}
    return usage_from_counts(usage.get("input_tokens"), usage.get("output_tokens"))


def _raise_if_failed(payload: Mapping[str, Any], *, phase: str) -> None:
    if not payload.get("is_error"):
        return
    message = payload.get("error_message") or payload.get("result")
    raise error_from_payload(
        None,
        str(message) if message else "CLI reported an error result",
        provider=PROVIDER,
        phase=phase,
    )


def from_cli_result(payload: Mapping[str, Any]) -> CanonicalResponse:
    """Convert the single JSON object printed by ``--output-format=json``."""
    if not isinstance(payload, dict):
        raise ProtocolError(
            "CLI output is not a JSON object", provider=PROVIDER, phase="generate"
        )
    _raise_if_failed(payload, phase="generate")
    if payload.get("type") != "result":
        raise ProtocolError(
            f"Unexpected CLI output type {payload.get('type')!r}",
            provider=PROVIDER,
            phase="generate",
        )
    finish = (
        FinishReason.STOP
        if payload.get("subtype", "success") == "success"
        else FinishReason.OTHER
    )
    return CanonicalResponse.single(
        str(payload.get("result") or ""),
        finish,
        usage=_result_usage(payload),
        metadata=_result_metadata(payload),
    )


def _assistant_text(payload: Mapping[str, Any]) -> str:
    message = payload.get("message") or {}
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "".join(
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type", "text") == "text"
    )


def from_cli_stream_event(
    kind: str, payload: Mapping[str, Any], *, text_seen: bool = False
) -> CanonicalResponse | None:
    """Convert one ``stream-json`` line.

    ``assistant`` lines become text deltas. A ``result`` line is terminal and
    repeats the full text only when no delta text was emitted before it.
    """
    if kind == "assistant":
        text = _assistant_text(payload)
        if not text:
            return None
        return CanonicalResponse.single(text, FinishReason.OTHER)

    if kind == "result":
        _raise_if_failed(payload, phase="stream")
        text = "" if text_seen else str(payload.get("result") or "")
        finish = (
            FinishReason.STOP
            if payload.get("subtype", "success") == "success"
            else FinishReason.OTHER
        )
        return CanonicalResponse(
            candidates=(
                Candidate(
                    parts=(TextPart(text),) if text else (), finish_reason=finish
                ),
            ),
            usage=_result_usage(payload),
            metadata=_result_metadata(payload),
        )

    if kind == "system":
        logger.debug(
            "CLI session started (subtype=%s, session_id=%s)",
            payload.get("subtype"),
            payload.get("session_id"),
        )
    return None
