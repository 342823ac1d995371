"""
Tokenizer
=========
Splits sanitized script text into positioned tokens.  String literals
arrive with blank bodies (see :mod:`dosage_lint.sanitizer`), so a single
regex scanner is enough; regular-expression literals are not recognised
and surface as ``/`` punctuators.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from dosage_lint.diagnostics import LineIndex


class TokenKind(Enum):
    IDENT = "ident"
    NUMBER = "number"
    STRING = "string"
    PUNCT = "punct"
    OTHER = "other"


@dataclass(frozen=True)
class Token:
    """A lexical token.

    Attributes:
        kind: Token category.
        text: Token text as it appears in the sanitized source.
        start: Offset of the first character.
        line: 1-based line of ``start``.
        column: 1-based column of ``start``.
        newline_before: Whether a line break separates this token from the
            previous one.
    """

    kind: TokenKind
    text: str
    start: int
    line: int
    column: int
    newline_before: bool = False

    @property
    def end(self) -> int:
        return self.start + len(self.text)

    def is_punct(self, *texts: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text in texts

    def is_ident(self, *names: str) -> bool:
        return self.kind is TokenKind.IDENT and (not names or self.text in names)


_PUNCTUATORS = sorted(
    [
        ">>>=", "...", "===", "!==", "**=", "<<=", ">>=", ">>>",
        "=>", "==", "!=", "<=", ">=", "&&", "||", "??", "?.", "++", "--",
        "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "**", "<<", ">>",
        "{", "}", "(", ")", "[", "]", ";", ",", "<", ">", "+", "-", "*",
        "/", "%", "&", "|", "^", "!", "~", "?", ":", "=", ".",
    ],
    key=len,
    reverse=True,
)

_TOKEN_RE = re.compile(
    r"(?P<ws>[ \t\r\f\v\u00a0\ufeff]+)"
    r"|(?P<nl>\n)"
    r"|(?P<line_comment>//[^\n]*)"
    r"|(?P<block_comment>/\*.*?(?:\*/|\Z))"
    r"|(?P<ident>[A-Za-z_$][A-Za-z0-9_$]*)"
    r"|(?P<number>0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
    r"|(?P<string>\"[^\"\n]*\"?|'[^'\n]*'?|`[^`]*`?)"
    r"|(?P<punct>" + "|".join(re.escape(p) for p in _PUNCTUATORS) + r")"
    r"|(?P<other>.)",
    re.DOTALL,
)

_KIND_BY_GROUP = {
    "ident": TokenKind.IDENT,
    "number": TokenKind.NUMBER,
    "string": TokenKind.STRING,
    "punct": TokenKind.PUNCT,
    "other": TokenKind.OTHER,
}


def iter_tokens(sanitized: str, index: Optional[LineIndex] = None) -> Iterator[Token]:
    """Yield tokens from *sanitized* text, skipping whitespace and comments."""
    index = index or LineIndex(sanitized)
    pos = 0
    newline_pending = False
    length = len(sanitized)

    while pos < length:
        match = _TOKEN_RE.match(sanitized, pos)
        group = match.lastgroup
        text = match.group()
        pos = match.end()

        if group == "ws" or group == "line_comment":
            continue
        if group == "nl":
            newline_pending = True
            continue
        if group == "block_comment":
            if "\n" in text:
                newline_pending = True
            continue

        line, column = index.position(match.start())
        yield Token(_KIND_BY_GROUP[group], text, match.start(), line, column, newline_pending)
        newline_pending = False


def tokenize(sanitized: str, index: Optional[LineIndex] = None) -> List[Token]:
    """Return all tokens of *sanitized* text as a list."""
    return list(iter_tokens(sanitized, index))


def matching_close(tokens: List[Token], open_index: int) -> Optional[int]:
    """Index of the token closing the bracket at *open_index*, or ``None``.

    Only the bracket kind at *open_index* is counted; other kinds are
    ignored, which keeps the result sensible on unbalanced input.
    """
    opener = tokens[open_index].text
    closer = {"(": ")", "[": "]", "{": "}"}[opener]
    depth = 0
    for i in range(open_index, len(tokens)):
        tok = tokens[i]
        if tok.kind is not TokenKind.PUNCT:
            continue
        if tok.text == opener:
            depth += 1
        elif tok.text == closer:
            depth -= 1
            if depth == 0:
                return i
    return None


def is_property_access(tokens: List[Token], i: int) -> bool:
    """True when the token at *i* is preceded or followed by ``.``."""
    if i > 0 and tokens[i - 1].is_punct(".", "?."):
        return True
    return i + 1 < len(tokens) and tokens[i + 1].is_punct(".", "?.")


def is_property_name(tokens: List[Token], i: int) -> bool:
    """True when the token at *i* is the name part of ``obj.name``."""
    return i > 0 and tokens[i - 1].is_punct(".", "?.")


def is_object_key(tokens: List[Token], i: int) -> bool:
    """True for ``key`` in ``{ key: value }`` or ``{ a, key: value }``."""
    if i + 1 >= len(tokens) or not tokens[i + 1].is_punct(":"):
        return False
    return i > 0 and tokens[i - 1].is_punct("{", ",")


def is_call(tokens: List[Token], i: int) -> bool:
    return i + 1 < len(tokens) and tokens[i + 1].is_punct("(")


def token_range(tokens: List[Token], start: int, end: int) -> range:
    """Indices of tokens whose start offset lies in ``[start, end)``."""
    starts = [t.start for t in tokens]
    return range(bisect.bisect_left(starts, start), bisect.bisect_left(starts, end))
