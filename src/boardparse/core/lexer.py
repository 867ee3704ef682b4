"""Lexer: raw post body -> token stream.

The lexer never rejects input. Anything it cannot place (a stray close, an
opener past the nesting limit, a code opener with no close) is folded into
the surrounding plain-text token, so the spans of all tokens always
concatenate back to the original body.
"""

import re
from collections import Counter
from typing import Iterator

from .board import DELIMITED_KINDS, BoardConfig, NestingPolicy
from .model import Range, Token, TokenKind

URL_RE = re.compile(r"https?://[^\s<>\[\]`\"]+")
URL_TRAILING = ".,;:!?)'\""


class TokenStream:
    """
    Lazy, restartable token sequence. Each iteration rescans the body, so
    iterating twice yields equal tokens and has no side effects.
    """

    def __init__(self, lexer: "Lexer", text: str):
        self.lexer = lexer
        self.text = text

    def __iter__(self) -> Iterator[Token]:
        return self.lexer.scan(self.text)

    def __repr__(self) -> str:
        return f"TokenStream({self.text[:20]!r}...)"


class Lexer:
    def __init__(self, config: BoardConfig):
        self.config = config

        # literal -> (kind, role) where role is "open", "close" or "toggle"
        self.delimiters: dict[str, tuple[str, str]] = {}
        for kind in DELIMITED_KINDS:
            pair = config.delimiter_for(kind)
            if pair is None:
                continue
            opener, closer = pair
            if opener == closer:
                self.delimiters[opener] = (kind, "toggle")
            else:
                self.delimiters[opener] = (kind, "open")
                self.delimiters[closer] = (kind, "close")

        self.links = "link" in config.allowed_markup
        self.scanner = self._build_scanner()

    def _build_scanner(self) -> re.Pattern:
        parts = [
            r"(?P<br>\r\n|\r|\n)",
            r"(?P<ref>" + re.escape(self.config.reference_sigil) + r"[0-9]+)",
        ]
        if self.links:
            parts.append(r"(?P<url>https?://)")
        if self.delimiters:
            # Longest first so "[/spoiler]" wins over any shorter prefix
            literals = sorted(self.delimiters, key=len, reverse=True)
            parts.append(
                "(?P<delim>" + "|".join(re.escape(lit) for lit in literals) + ")"
            )
        return re.compile("|".join(parts))

    def tokenize(self, text: str) -> TokenStream:
        return TokenStream(self, text)

    def scan(self, text: str) -> Iterator[Token]:
        """Scan text once, left to right, yielding tokens."""
        depth: Counter[str] = Counter()
        total_depth = 0
        plain_start = 0  # start of the pending plain-text run
        pos = 0

        def flush(upto: int) -> Iterator[Token]:
            if upto > plain_start:
                yield Token(TokenKind.PLAIN, Range(plain_start, upto), text[plain_start:upto])

        while pos < len(text):
            m = self.scanner.search(text, pos)
            if m is None:
                break
            start = m.start()

            if m.lastgroup == "br":
                yield from flush(start)
                yield Token(TokenKind.LINE_BREAK, Range(start, m.end()), m.group())
                pos = plain_start = m.end()
                continue

            if m.lastgroup == "ref":
                yield from flush(start)
                yield Token(TokenKind.REFERENCE, Range(start, m.end()), m.group())
                pos = plain_start = m.end()
                continue

            if m.lastgroup == "url":
                end = self._url_end(text, start)
                if end is None:
                    pos = m.end()
                    continue
                yield from flush(start)
                yield Token(TokenKind.LINK, Range(start, end), text[start:end])
                pos = plain_start = end
                continue

            literal = m.group()
            kind, role = self.delimiters[literal]
            end = m.end()

            if kind == "code":
                closer = self.config.delimiters["code"][1]
                close_at = text.find(closer, end)
                if (
                    role == "close"
                    or close_at == -1
                    or total_depth >= self.config.max_nesting_depth
                ):
                    pos = end
                    continue
                yield from flush(start)
                yield Token(TokenKind.OPEN, Range(start, end), literal, kind)
                if close_at > end:
                    yield Token(TokenKind.PLAIN, Range(end, close_at), text[end:close_at])
                close_end = close_at + len(closer)
                yield Token(TokenKind.CLOSE, Range(close_at, close_end), closer, kind)
                pos = plain_start = close_end
                continue

            closing = role == "close" or (role == "toggle" and depth[kind] > 0)
            if closing:
                if depth[kind] == 0:
                    # Nothing of this kind is open
                    pos = end
                    continue
                depth[kind] -= 1
                total_depth -= 1
                yield from flush(start)
                yield Token(TokenKind.CLOSE, Range(start, end), literal, kind)
                pos = plain_start = end
                continue

            if not self._may_open(kind, depth, total_depth):
                pos = end
                continue
            depth[kind] += 1
            total_depth += 1
            yield from flush(start)
            yield Token(TokenKind.OPEN, Range(start, end), literal, kind)
            pos = plain_start = end

        yield from flush(len(text))

    def _may_open(self, kind: str, depth: Counter, total_depth: int) -> bool:
        if total_depth >= self.config.max_nesting_depth:
            return False
        if self.config.nesting_policy == NestingPolicy.REJECT and depth[kind] > 0:
            return False
        return True

    def _url_end(self, text: str, start: int) -> int | None:
        m = URL_RE.match(text, start)
        if m is None:
            return None
        url = m.group().rstrip(URL_TRAILING)
        # A bare scheme with nothing after it is not a link
        if url.endswith("://"):
            return None
        return start + len(url)


def tokenize(raw_text: str, board_config: BoardConfig) -> TokenStream:
    """Tokenize a post body with the given board's grammar."""
    return Lexer(board_config).tokenize(raw_text)
