"""Validation and mapping tables shared by every wire converter."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from switchyard.content import ROLES, FinishReason, OpaquePart, Turn, Usage
from switchyard.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from switchyard.content import CanonicalRequest, GenerationConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4000

ANTHROPIC_FINISH_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.MAX_TOKENS,
}

OPENAI_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
}


def map_finish_reason(
    raw: str | None, table: Mapping[str, FinishReason]
) -> FinishReason:
    """Look up *raw* in *table*; unknown or missing values map to OTHER."""
    if raw is None:
        return FinishReason.OTHER
    return table.get(raw, FinishReason.OTHER)


def validate_generation_config(config: GenerationConfig) -> None:
    """Reject malformed sampling parameters before anything is sent."""
    for name in ("temperature", "top_p"):
        value = getattr(config, name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(
                f"{name} must be a number, got {value!r}",
                hint=f"Pass {name} as a float between 0 and 1.",
            )
        if not 0 <= value <= 1:
            raise ValidationError(
                f"{name} must be between 0 and 1, got {value}",
                hint=f"Pass {name} as a float between 0 and 1.",
            )

    top_k = config.top_k
    if top_k is not None and (
        isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1
    ):
        raise ValidationError(
            f"top_k must be a positive integer, got {top_k!r}",
            hint="Omit top_k or pass an int >= 1.",
        )

    count = config.candidate_count
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValidationError(
            f"candidate_count must be >= 1, got {count!r}",
        )

    max_tokens = config.max_output_tokens
    if max_tokens is not None and (
        isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < 1
    ):
        raise ValidationError(
            f"max_output_tokens must be a positive integer, got {max_tokens!r}",
        )


def resolve_max_tokens(config: GenerationConfig) -> int:
    """Per-candidate token budget; falls back to DEFAULT_MAX_TOKENS."""
    if config.max_output_tokens is None:
        return DEFAULT_MAX_TOKENS
    return max(1, config.max_output_tokens // config.candidate_count)


def known_turns(turns: Iterable[Turn]) -> list[Turn]:
    """Filter out turns whose role no wire format can carry."""
    kept: list[Turn] = []
    for turn in turns:
        if turn.role not in ROLES:
            logger.warning("Dropping turn with unsupported role %r", turn.role)
            continue
        kept.append(turn)
    return kept


def turn_text(turn: Turn, *, wire: str) -> str:
    """Joined text of *turn*; opaque parts are left out of the wire body."""
    opaque = sum(1 for p in turn.parts if isinstance(p, OpaquePart))
    if opaque:
        logger.debug(
            "Omitting %d structured part(s) from %s %s turn", opaque, wire, turn.role
        )
    return turn.joined_text()


def prepare(request: CanonicalRequest) -> list[Turn]:
    """Validate *request* and return its merged, role-filtered turns."""
    validate_generation_config(request.config)
    return known_turns(request.merged_turns())


def usage_from_counts(input_tokens: Any, output_tokens: Any) -> Usage | None:
    """Build Usage from provider-reported counts.

    Returns None unless the provider reported both counts; a missing side is
    never filled in.
    """
    if input_tokens is None or output_tokens is None:
        if input_tokens is not None or output_tokens is not None:
            logger.debug(
                "Partial usage counts dropped: input=%r output=%r",
                input_tokens,
                output_tokens,
            )
        return None
    try:
        return Usage(input_tokens=int(input_tokens), output_tokens=int(output_tokens))
    except (TypeError, ValueError):
        logger.warning(
            "Ignoring non-numeric usage counts: %r/%r", input_tokens, output_tokens
        )
        return None
