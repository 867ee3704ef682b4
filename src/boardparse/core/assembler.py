"""Markup assembler: token stream -> document tree.

Nesting is tracked on an explicit stack of open contexts, so adversarial
input cannot exhaust the interpreter's call stack.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable

from .model import (
    GROUP_TYPES,
    MAX_POST_ID,
    BlockGroup,
    Diagnostic,
    LineBreak,
    Link,
    Node,
    Range,
    Reference,
    TextRun,
    Token,
    TokenKind,
)

TRAILING_DIGITS_RE = re.compile(r"([0-9]+)$")

# Longer digit runs are out of range; never hand them to int()
MAX_ID_DIGITS = len(str(MAX_POST_ID))


@dataclass
class _Context:
    kind: str
    opener: Token | None
    children: list[Node] = field(default_factory=list)


def _append(children: list[Node], node: Node) -> None:
    """Append a node, coalescing contiguous text runs."""
    if isinstance(node, TextRun) and children:
        last = children[-1]
        if isinstance(last, TextRun) and last.span.end == node.span.start:
            children[-1] = TextRun(last.text + node.text, Range(last.span.start, node.span.end))
            return
    children.append(node)


def _flatten(ctx: _Context, parent: _Context, diagnostics: list[Diagnostic] | None) -> None:
    """Fold an unclosed context back into its parent as plain text."""
    opener = ctx.opener
    assert opener is not None
    if diagnostics is not None:
        diagnostics.append(
            Diagnostic(
                "unclosed-delimiter",
                f"{opener.raw!r} is never closed",
                opener.span,
                severity="info",
            )
        )
    _append(parent.children, TextRun(opener.raw, opener.span))
    for child in ctx.children:
        _append(parent.children, child)


def assemble(
    tokens: Iterable[Token], diagnostics: list[Diagnostic] | None = None
) -> BlockGroup:
    """
    Build the document tree for a token stream.

    Args:
        tokens: Tokens in source order (any iterable, consumed once)
        diagnostics: Optional list that receives markup diagnostics

    Returns:
        Root BlockGroup whose children are the top-level nodes. Reference
        nodes are unresolved placeholders.
    """
    root = _Context("group", None)
    stack: list[_Context] = [root]
    end = 0

    for tok in tokens:
        end = tok.span.end
        top = stack[-1]

        if tok.kind == TokenKind.PLAIN:
            _append(top.children, TextRun(tok.raw, tok.span))

        elif tok.kind == TokenKind.LINE_BREAK:
            top.children.append(LineBreak(tok.raw, tok.span))

        elif tok.kind == TokenKind.LINK:
            top.children.append(Link(tok.raw, tok.span))

        elif tok.kind == TokenKind.REFERENCE:
            m = TRAILING_DIGITS_RE.search(tok.raw)
            if m is None:
                _append(top.children, TextRun(tok.raw, tok.span))
            else:
                digits = m.group(1)
                if len(digits) > MAX_ID_DIGITS:
                    post_id = MAX_POST_ID + 1
                else:
                    post_id = int(digits)
                top.children.append(Reference(tok.raw, post_id, tok.span))

        elif tok.kind == TokenKind.OPEN:
            if tok.markup in GROUP_TYPES:
                stack.append(_Context(tok.markup, tok))
            else:
                _append(top.children, TextRun(tok.raw, tok.span))

        elif tok.kind == TokenKind.CLOSE:
            match = None
            for i in range(len(stack) - 1, 0, -1):
                if stack[i].kind == tok.markup:
                    match = i
                    break

            if match is None:
                if diagnostics is not None:
                    diagnostics.append(
                        Diagnostic(
                            "unmatched-close",
                            f"{tok.raw!r} closes nothing",
                            tok.span,
                            severity="info",
                        )
                    )
                _append(top.children, TextRun(tok.raw, tok.span))
                continue

            # Contexts opened after the matching one never got closed
            while len(stack) - 1 > match:
                inner = stack.pop()
                _flatten(inner, stack[-1], diagnostics)

            ctx = stack.pop()
            assert ctx.opener is not None
            group = GROUP_TYPES[ctx.kind](
                children=tuple(ctx.children),
                span=Range(ctx.opener.span.start, tok.span.end),
                opener=ctx.opener.raw,
                closer=tok.raw,
            )
            stack[-1].children.append(group)

    while len(stack) > 1:
        inner = stack.pop()
        _flatten(inner, stack[-1], diagnostics)

    return BlockGroup(children=tuple(root.children), span=Range(0, end))
