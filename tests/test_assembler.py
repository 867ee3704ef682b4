"""Tests for building the document tree from tokens."""

from boardparse.core.assembler import assemble
from boardparse.core.board import BoardConfig
from boardparse.core.lexer import tokenize
from boardparse.core.model import (
    BlockGroup,
    CodeSpan,
    LineBreak,
    Link,
    Quote,
    Range,
    Reference,
    Spoiler,
    TextRun,
    iter_nodes,
)
from boardparse.core.render import render_text


def build(body, config=None):
    diagnostics = []
    doc = assemble(tokenize(body, config or BoardConfig()), diagnostics)
    return doc, diagnostics


def test_example_tree():
    doc, diagnostics = build("see >>42 and [spoiler]hi[/spoiler]")
    assert diagnostics == []
    assert doc.span == Range(0, 34)
    assert doc.children == (
        TextRun("see ", Range(0, 4)),
        Reference(">>42", 42, Range(4, 8)),
        TextRun(" and ", Range(8, 13)),
        Spoiler(
            children=(TextRun("hi", Range(22, 24)),),
            span=Range(13, 34),
            opener="[spoiler]",
            closer="[/spoiler]",
        ),
    )


def test_references_are_placeholders():
    doc, _ = build(">>1 >>2")
    refs = [n for n in iter_nodes(doc) if isinstance(n, Reference)]
    assert [r.post_id for r in refs] == [1, 2]
    assert all(not r.resolved and r.thread_id is None for r in refs)


def test_empty_body():
    doc, diagnostics = build("")
    assert doc == BlockGroup(children=(), span=Range(0, 0))
    assert diagnostics == []


def test_unclosed_group_is_flattened():
    """An opener with no close becomes plain text, children kept in order."""
    doc, diagnostics = build("[spoiler]hi >>3")
    assert doc.children == (
        TextRun("[spoiler]hi ", Range(0, 12)),
        Reference(">>3", 3, Range(12, 15)),
    )
    assert [d.code for d in diagnostics] == ["unclosed-delimiter"]
    assert diagnostics[0].span == Range(0, 9)


def test_crossing_delimiters():
    body = "[spoiler]a[quote]b[/spoiler]c[/quote]"
    doc, diagnostics = build(body)
    assert doc.children == (
        Spoiler(
            children=(TextRun("a[quote]b", Range(9, 18)),),
            span=Range(0, 28),
            opener="[spoiler]",
            closer="[/spoiler]",
        ),
        TextRun("c[/quote]", Range(28, 37)),
    )
    assert sorted(d.code for d in diagnostics) == ["unclosed-delimiter", "unmatched-close"]
    assert render_text(doc) == body


def test_nested_groups():
    doc, diagnostics = build("[quote]a [spoiler]b[/spoiler][/quote]")
    assert diagnostics == []
    (quote,) = doc.children
    assert isinstance(quote, Quote)
    assert quote.children[0] == TextRun("a ", Range(7, 9))
    assert isinstance(quote.children[1], Spoiler)
    assert quote.children[1].children == (TextRun("b", Range(18, 19)),)


def test_code_span_and_link_and_breaks():
    doc, _ = build("`x`\nhttps://a.example/p")
    assert doc.children == (
        CodeSpan(
            children=(TextRun("x", Range(1, 2)),),
            span=Range(0, 3),
            opener="`",
            closer="`",
        ),
        LineBreak("\n", Range(3, 4)),
        Link("https://a.example/p", Range(4, 23)),
    )


def test_text_runs_never_adjacent():
    doc, _ = build("[spoiler]a[quote]b[/spoiler]c[/quote] [/spoiler] d")
    for node in iter_nodes(doc):
        if isinstance(node, BlockGroup):
            for left, right in zip(node.children, node.children[1:]):
                assert not (isinstance(left, TextRun) and isinstance(right, TextRun))


def test_deep_nesting_does_not_recurse():
    """Thousands of unclosed openers fold back without a recursion error."""
    config = BoardConfig(max_nesting_depth=10000, max_body_length=100000)
    body = "[quote]" * 5000 + "x"
    doc, diagnostics = build(body, config)
    assert doc.children == (TextRun(body, Range(0, len(body))),)
    assert len(diagnostics) == 5000


def test_diagnostics_optional():
    doc = assemble(tokenize("[quote]x", BoardConfig()))
    assert render_text(doc) == "[quote]x"


def test_oversized_reference_number_does_not_raise():
    """Digit runs past the largest post ID never reach int()."""
    body = ">>" + "9" * 5000
    doc, diagnostics = build(body, BoardConfig(max_body_length=10000))
    (ref,) = doc.children
    assert isinstance(ref, Reference)
    assert ref.post_id > 2**63 - 1
    assert ref.span == Range(0, len(body))
    assert diagnostics == []
