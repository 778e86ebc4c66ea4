"""Canonical content model shared by every converter and generator."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]
ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})

# Alternate spellings accepted on input.
_ROLE_ALIASES: dict[str, str] = {"model": "assistant"}

SYSTEM_SEPARATOR = "\n\n"


class FinishReason(str, Enum):
    """Closed set of completion reasons."""

    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    OTHER = "other"


@dataclass(frozen=True)
class TextPart:
    """Plain text content."""

    text: str


@dataclass(frozen=True)
class OpaquePart:
    """Structured content (function calls, media) carried through untouched."""

    payload: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))


Part = TextPart | OpaquePart


def _coerce_part(part: Part | str) -> Part:
    if isinstance(part, str):
        return TextPart(part)
    return part


@dataclass(frozen=True)
class Turn:
    """One conversation turn.

    ``model`` is accepted as an alias for ``assistant``. Other unknown roles
    are kept as given; converters drop them with a warning.
    """

    role: str
    parts: tuple[Part, ...] = ()

    def __post_init__(self) -> None:
        role = _ROLE_ALIASES.get(self.role, self.role)
        object.__setattr__(self, "role", role)
        object.__setattr__(
            self, "parts", tuple(_coerce_part(p) for p in self.parts)
        )

    @classmethod
    def from_text(cls, role: str, text: str) -> Turn:
        return cls(role=role, parts=(TextPart(text),))

    @property
    def is_known_role(self) -> bool:
        return self.role in ROLES

    def text_parts(self) -> list[str]:
        return [p.text for p in self.parts if isinstance(p, TextPart)]

    def joined_text(self, separator: str = "\n") -> str:
        return separator.join(self.text_parts())


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters. Validation happens in the converters."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: tuple[str, ...] = ()
    candidate_count: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))


@dataclass(frozen=True)
class CanonicalRequest:
    """Provider-neutral generation request."""

    turns: tuple[Turn, ...]
    model: str | None = None
    config: GenerationConfig = field(default_factory=GenerationConfig)

    def __post_init__(self) -> None:
        object.__setattr__(self, "turns", tuple(self.turns))

    @classmethod
    def from_text(
        cls,
        prompt: str,
        *,
        system: str | None = None,
        model: str | None = None,
        config: GenerationConfig | None = None,
    ) -> CanonicalRequest:
        """Build a single-prompt request, optionally with a system turn."""
        turns: list[Turn] = []
        if system:
            turns.append(Turn.from_text("system", system))
        turns.append(Turn.from_text("user", prompt))
        return cls(
            turns=tuple(turns), model=model, config=config or GenerationConfig()
        )

    def merged_turns(self) -> tuple[Turn, ...]:
        """Return turns with adjacent system turns merged into one.

        Text is concatenated with a blank line; opaque parts are kept in order.
        """
        merged: list[Turn] = []
        for turn in self.turns:
            if (
                turn.role == "system"
                and merged
                and merged[-1].role == "system"
            ):
                prev = merged[-1]
                merged[-1] = Turn(role="system", parts=_join_system_parts(prev, turn))
            else:
                merged.append(turn)
        return tuple(merged)

    def system_text(self) -> str | None:
        """All system text in order, joined with a blank line."""
        texts = [
            t.joined_text() for t in self.turns if t.role == "system" and t.text_parts()
        ]
        return SYSTEM_SEPARATOR.join(texts) if texts else None

    def text_length(self) -> int:
        """Total characters across all text parts."""
        return sum(len(text) for turn in self.turns for text in turn.text_parts())


def _join_system_parts(first: Turn, second: Turn) -> tuple[Part, ...]:
    text_a = first.joined_text()
    text_b = second.joined_text()
    if text_a and text_b:
        text = f"{text_a}{SYSTEM_SEPARATOR}{text_b}"
    else:
        text = text_a or text_b
    opaque = [p for p in (*first.parts, *second.parts) if isinstance(p, OpaquePart)]
    return (TextPart(text), *opaque)


@dataclass(frozen=True)
class Usage:
    """Provider-reported token counts. ``total_tokens`` is always the sum."""

    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def as_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class Candidate:
    """One completion choice."""

    parts: tuple[Part, ...] = ()
    finish_reason: FinishReason = FinishReason.OTHER
    index: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "parts", tuple(_coerce_part(p) for p in self.parts)
        )

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


@dataclass(frozen=True)
class CanonicalResponse:
    """Provider-neutral response, or one streamed slice of it."""

    candidates: tuple[Candidate, ...]
    usage: Usage | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "candidates", tuple(self.candidates))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def single(
        cls,
        text: str,
        finish_reason: FinishReason = FinishReason.OTHER,
        *,
        usage: Usage | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CanonicalResponse:
        parts: tuple[Part, ...] = (TextPart(text),) if text else ()
        return cls(
            candidates=(Candidate(parts=parts, finish_reason=finish_reason),),
            usage=usage,
            metadata=metadata or {},
        )

    @property
    def text(self) -> str:
        """Text of the first candidate (empty when there are none)."""
        return self.candidates[0].text if self.candidates else ""

    @property
    def finish_reason(self) -> FinishReason | None:
        return self.candidates[0].finish_reason if self.candidates else None


@dataclass(frozen=True)
class TokenCount:
    """Result of ``count_tokens``. ``estimated`` marks length-based counts."""

    total_tokens: int
    estimated: bool


@dataclass(frozen=True)
class EmbedRequest:
    """Texts to embed with an optional model override."""

    texts: tuple[str, ...]
    model: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "texts", tuple(self.texts))


@dataclass(frozen=True)
class EmbedResult:
    """One vector per input text, in input order."""

    embeddings: tuple[tuple[float, ...], ...]
    usage: Usage | None = None
