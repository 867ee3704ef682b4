"""Tests for HTML and text rendering."""

from boardparse.adapters.memory_gateway import MemoryGateway
from boardparse.config import ConfigProvider
from boardparse.core.assembler import assemble
from boardparse.core.board import BoardConfig
from boardparse.core.lexer import tokenize
from boardparse.core.pipeline import PostParser
from boardparse.core.render import node_to_dict, render_html, render_text


def persist(body, posts, source=100):
    parser = PostParser(ConfigProvider(), MemoryGateway(posts))
    return parser.parse_and_persist(body, "b", source)


def test_render_text_round_trips():
    body = "a [quote]b `c` >>1[/quote]\nhttps://x.example/y [spoiler]z"
    document = assemble(tokenize(body, BoardConfig()))
    assert render_text(document) == body


def test_html_groups_and_escaping():
    document = assemble(tokenize("[quote]<i>[/quote]`a&b`\n", BoardConfig()))
    assert render_html(document) == (
        "<blockquote>&lt;i&gt;</blockquote><code>a&amp;b</code><br>"
    )


def test_html_link():
    document = assemble(tokenize("https://example.com/?a=1&b=2", BoardConfig()))
    assert render_html(document) == (
        '<a href="https://example.com/?a=1&amp;b=2" rel="nofollow noreferrer" '
        'target="_blank">https://example.com/?a=1&amp;b=2</a>'
    )


def test_html_resolved_reference():
    result = persist("re >>42", {42: 7})
    assert render_html(result.document, result.diagnostics) == (
        're <a class="post-link" href="/7#p42">&gt;&gt;42</a>'
    )


def test_html_self_reference_links_in_page():
    result = persist(">>100", {100: 7})
    assert render_html(result.document) == '<a class="post-link" href="#p100">&gt;&gt;100</a>'


def test_html_dead_link():
    result = persist("see >>42 ok", {})
    assert render_html(result.document, result.diagnostics) == (
        'see <span class="dead-link" title="Post 42 does not exist">&gt;&gt;42</span> ok'
    )


def test_html_without_diagnostics_is_plain():
    result = persist("see >>42", {})
    assert render_html(result.document) == "see &gt;&gt;42"


def test_node_to_dict():
    result = persist("[spoiler]>>42[/spoiler]", {42: 7})
    assert node_to_dict(result.document) == {
        "type": "group",
        "span": [0, 23],
        "children": [
            {
                "type": "spoiler",
                "span": [0, 23],
                "children": [
                    {
                        "type": "reference",
                        "raw": ">>42",
                        "post": 42,
                        "thread": 7,
                        "resolved": True,
                        "span": [9, 13],
                    },
                ],
            },
        ],
    }
