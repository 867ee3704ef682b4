"""Per-board grammar settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .errors import ConfigError

MARKUP_KINDS = ("quote", "spoiler", "code", "link")

# Kinds written as an open/close delimiter pair ("link" is detected by shape)
DELIMITED_KINDS = ("quote", "spoiler", "code")

DEFAULT_DELIMITERS: dict[str, tuple[str, str]] = {
    "quote": ("[quote]", "[/quote]"),
    "spoiler": ("[spoiler]", "[/spoiler]"),
    "code": ("`", "`"),
}


class NestingPolicy(str, Enum):
    REJECT = "reject"  # identical delimiter inside an open one is plain text
    ALLOW = "allow"  # nest up to max_nesting_depth


@dataclass(frozen=True)
class BoardConfig:
    allowed_markup: frozenset[str] = frozenset(MARKUP_KINDS)
    reference_sigil: str = ">>"
    nesting_policy: NestingPolicy = NestingPolicy.ALLOW
    max_nesting_depth: int = 8
    max_body_length: int = 2000
    delimiters: Mapping[str, tuple[str, str]] = field(
        default_factory=lambda: dict(DEFAULT_DELIMITERS)
    )

    def __post_init__(self) -> None:
        validate_board_config(self)
        # Read-only copies
        object.__setattr__(self, "allowed_markup", frozenset(self.allowed_markup))
        object.__setattr__(
            self,
            "delimiters",
            MappingProxyType({k: tuple(v) for k, v in self.delimiters.items()}),
        )

    def __hash__(self) -> int:
        return hash(
            (
                self.allowed_markup,
                self.reference_sigil,
                self.nesting_policy,
                self.max_nesting_depth,
                self.max_body_length,
                tuple(sorted(self.delimiters.items())),
            )
        )

    def delimiter_for(self, kind: str) -> tuple[str, str] | None:
        """Return (open, close) for an enabled delimited kind, else None."""
        if kind not in self.allowed_markup:
            return None
        return self.delimiters.get(kind)


def validate_board_config(config: BoardConfig) -> None:
    """Raise ConfigError if the board settings cannot drive the lexer."""
    unknown = set(config.allowed_markup) - set(MARKUP_KINDS)
    if unknown:
        raise ConfigError(f"Unknown markup kinds: {', '.join(sorted(unknown))}")

    if not config.reference_sigil:
        raise ConfigError("reference_sigil must not be empty")
    if any(ch.isdigit() or ch.isspace() for ch in config.reference_sigil):
        raise ConfigError(
            f"reference_sigil {config.reference_sigil!r} may not contain digits or whitespace"
        )

    if config.max_nesting_depth < 1:
        raise ConfigError("max_nesting_depth must be at least 1")
    if config.max_body_length < 1:
        raise ConfigError("max_body_length must be at least 1")

    seen: dict[str, str] = {}
    for kind, pair in config.delimiters.items():
        if kind not in DELIMITED_KINDS:
            raise ConfigError(f"Markup kind {kind!r} has no delimiters")
        if len(pair) != 2 or not all(isinstance(p, str) and p for p in pair):
            raise ConfigError(f"Delimiters for {kind!r} must be two non-empty strings")
        for literal in set(pair):
            if any(ch in "\r\n" for ch in literal):
                raise ConfigError(f"Delimiter {literal!r} may not contain line breaks")
            if literal in seen:
                raise ConfigError(
                    f"Delimiter {literal!r} is used by both {seen[literal]!r} and {kind!r}"
                )
            seen[literal] = kind


@dataclass(frozen=True)
class BoardSnapshot:
    """Immutable view of every board's settings at one point in time."""

    defaults: BoardConfig = field(default_factory=BoardConfig)
    boards: Mapping[str, BoardConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "boards", MappingProxyType(dict(self.boards)))

    def for_board(self, board_id: str) -> BoardConfig:
        return self.boards.get(board_id, self.defaults)