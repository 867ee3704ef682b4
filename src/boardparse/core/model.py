from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Iterator, Union

PostId = int
ThreadId = int

# Largest post number a reference may point at (signed 64-bit storage keys).
MAX_POST_ID = 2**63 - 1


@dataclass(frozen=True)
class Range:
    start: int  # character offsets into the raw body, half-open
    end: int

    def __len__(self) -> int:
        return self.end - self.start


class TokenKind(str, Enum):
    PLAIN = "plain"
    OPEN = "open-delim"
    CLOSE = "close-delim"
    REFERENCE = "reference-marker"
    LINE_BREAK = "line-break"
    LINK = "link"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    span: Range
    raw: str
    markup: str | None = None  # "quote" | "spoiler" | "code" for delimiters


# Document tree


@dataclass(frozen=True)
class TextRun:
    text: str
    span: Range


@dataclass(frozen=True)
class LineBreak:
    text: str
    span: Range


@dataclass(frozen=True)
class Link:
    url: str
    span: Range


@dataclass(frozen=True)
class Reference:
    raw: str  # e.g. ">>42"
    post_id: PostId
    span: Range
    thread_id: ThreadId | None = None
    resolved: bool = False  # False while still a placeholder


@dataclass(frozen=True)
class BlockGroup:
    kind: ClassVar[str] = "group"

    children: tuple["Node", ...] = ()
    span: Range = Range(0, 0)
    opener: str = ""
    closer: str = ""


@dataclass(frozen=True)
class Quote(BlockGroup):
    kind: ClassVar[str] = "quote"


@dataclass(frozen=True)
class Spoiler(BlockGroup):
    kind: ClassVar[str] = "spoiler"


@dataclass(frozen=True)
class CodeSpan(BlockGroup):
    kind: ClassVar[str] = "code"


Node = Union[TextRun, LineBreak, Link, Reference, BlockGroup]

GROUP_TYPES: dict[str, type[BlockGroup]] = {
    "quote": Quote,
    "spoiler": Spoiler,
    "code": CodeSpan,
}


def iter_nodes(root: Node) -> Iterator[Node]:
    """Yield every node of a tree in document order (pre-order)."""
    stack: list[Node] = [root]
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, BlockGroup):
            stack.extend(reversed(node.children))


# References


@dataclass(frozen=True)
class ReferenceCandidate:
    target: PostId
    raw: str
    span: Range
    thread: ThreadId | None = None


@dataclass(frozen=True)
class ResolvedReference:
    source: PostId
    target: PostId
    thread: ThreadId


@dataclass(frozen=True)
class Diagnostic:
    code: str  # "unresolved-reference" | "malformed-reference" | ...
    message: str
    span: Range | None = None
    severity: str = "warn"  # "info" | "warn"


@dataclass(frozen=True)
class ParseResult:
    document: BlockGroup
    references: tuple[ResolvedReference, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()
    sync_pending: bool = False


@dataclass(frozen=True)
class BacklinkDelta:
    source: PostId
    additions: tuple[ResolvedReference, ...] = ()
    removals: tuple[ResolvedReference, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.additions and not self.removals

    def by_target(
        self,
    ) -> dict[PostId, tuple[list[ResolvedReference], list[ResolvedReference]]]:
        """Group the delta per target post as ``{target: (adds, removes)}``."""
        grouped: dict[
            PostId, tuple[list[ResolvedReference], list[ResolvedReference]]
        ] = {}
        for ref in self.additions:
            grouped.setdefault(ref.target, ([], []))[0].append(ref)
        for ref in self.removals:
            grouped.setdefault(ref.target, ([], []))[1].append(ref)
        return grouped


@dataclass(frozen=True)
class SyncReport:
    source: PostId
    additions: tuple[ResolvedReference, ...] = ()
    removals: tuple[ResolvedReference, ...] = ()
    changed: int = 0  # rows the store actually inserted or deleted
