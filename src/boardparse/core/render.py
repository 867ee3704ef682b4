"""Renderers for document trees."""

from html import escape
from typing import Any, Iterable

from .model import (
    BlockGroup,
    CodeSpan,
    Diagnostic,
    LineBreak,
    Link,
    Node,
    Quote,
    Range,
    Reference,
    Spoiler,
    TextRun,
)
from .ports import Renderer


def render_text(node: Node) -> str:
    """Reproduce the source text of a node, delimiters included."""
    if isinstance(node, TextRun):
        return node.text
    if isinstance(node, LineBreak):
        return node.text
    if isinstance(node, Link):
        return node.url
    if isinstance(node, Reference):
        return node.raw
    return node.opener + "".join(render_text(c) for c in node.children) + node.closer


class HtmlRenderer(Renderer):
    GROUP_TAGS = {
        Quote: ("<blockquote>", "</blockquote>"),
        Spoiler: ('<del class="spoiler">', "</del>"),
        CodeSpan: ("<code>", "</code>"),
    }

    def render(self, document: BlockGroup, diagnostics: Iterable[Diagnostic] = ()) -> str:
        # Downgraded references sit inside text runs at their diagnostic span
        dead: dict[Range, str] = {
            d.span: d.message
            for d in diagnostics
            if d.span is not None and d.code.endswith("-reference")
        }
        return "".join(self._node(c, dead) for c in document.children)

    def _text(self, node: TextRun, dead: dict[Range, str]) -> str:
        start, end = node.span.start, node.span.end
        inside = sorted(
            (s for s in dead if start <= s.start and s.end <= end),
            key=lambda s: s.start,
        )
        parts = []
        pos = start
        for span in inside:
            parts.append(escape(node.text[pos - start:span.start - start]))
            parts.append(
                f'<span class="dead-link" title="{escape(dead[span])}">'
                f"{escape(node.text[span.start - start:span.end - start])}</span>"
            )
            pos = span.end
        parts.append(escape(node.text[pos - start:]))
        return "".join(parts)

    def _node(self, node: Node, dead: dict[Range, str]) -> str:
        if isinstance(node, TextRun):
            return self._text(node, dead)

        if isinstance(node, LineBreak):
            return "<br>"

        if isinstance(node, Link):
            url = escape(node.url)
            return f'<a href="{url}" rel="nofollow noreferrer" target="_blank">{url}</a>'

        if isinstance(node, Reference):
            if node.thread_id is None:
                href = f"#p{node.post_id}"
            else:
                href = f"/{node.thread_id}#p{node.post_id}"
            return f'<a class="post-link" href="{href}">{escape(node.raw)}</a>'

        inner = "".join(self._node(c, dead) for c in node.children)
        open_tag, close_tag = self.GROUP_TAGS.get(type(node), ("", ""))
        return open_tag + inner + close_tag


def render_html(document: BlockGroup, diagnostics: Iterable[Diagnostic] = ()) -> str:
    return HtmlRenderer().render(document, diagnostics)


def node_to_dict(node: Node) -> dict[str, Any]:
    """JSON-friendly view of a node and its children."""
    span = [node.span.start, node.span.end]
    if isinstance(node, TextRun):
        return {"type": "text", "text": node.text, "span": span}
    if isinstance(node, LineBreak):
        return {"type": "break", "span": span}
    if isinstance(node, Link):
        return {"type": "link", "url": node.url, "span": span}
    if isinstance(node, Reference):
        return {
            "type": "reference",
            "raw": node.raw,
            "post": node.post_id,
            "thread": node.thread_id,
            "resolved": node.resolved,
            "span": span,
        }
    return {
        "type": node.kind,
        "children": [node_to_dict(c) for c in node.children],
        "span": span,
    }
