"""
Source Sanitizer
================
Blanks out comment and string-literal bodies so pattern matching never
fires inside them.  The result has exactly the same length and line
breaks as the input, so every offset, line and column computed on the
sanitized text is valid for the original.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from dosage_lint.diagnostics import Diagnostic, LineIndex, Severity

QUOTES = ("\"", "'", "`")

_QUOTE_NAMES = {
    "\"": "double-quoted string",
    "'": "single-quoted string",
    "`": "template literal",
}


@dataclass(frozen=True)
class _Unterminated:
    offset: int
    kind: str


def _scan(source: str) -> tuple[str, List[_Unterminated]]:
    out = list(source)
    problems: List[_Unterminated] = []
    n = len(source)
    i = 0

    def blank(pos: int) -> None:
        if source[pos] not in "\r\n":
            out[pos] = " "

    while i < n:
        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            i += 2
            while i < n and source[i] != "\n":
                blank(i)
                i += 1
            continue

        if ch == "/" and nxt == "*":
            start = i
            i += 2
            while i < n and not (source[i] == "*" and i + 1 < n and source[i + 1] == "/"):
                blank(i)
                i += 1
            if i >= n:
                problems.append(_Unterminated(start, "comment"))
            i += 2
            continue

        if ch in QUOTES:
            start = i
            closed = False
            i += 1
            while i < n:
                c = source[i]
                if c == "\\" and i + 1 < n:
                    # An escaped newline continues the string on the next line.
                    blank(i)
                    blank(i + 1)
                    i += 2
                    continue
                if c == ch:
                    closed = True
                    i += 1
                    break
                if c == "\n" and ch != "`":
                    break
                blank(i)
                i += 1
            if not closed:
                problems.append(_Unterminated(start, ch))
            continue

        i += 1

    return "".join(out), problems


def sanitize(source: str) -> str:
    """Return *source* with comment and string bodies replaced by spaces.

    Comment delimiters (``//``, ``/*``, ``*/``) and quote characters are
    kept so later passes can still see that a literal was there.
    """
    return _scan(source)[0]


def find_unterminated_strings(source: str) -> List[Diagnostic]:
    """Report string literals (and block comments) that never close.

    Quoted strings must close on their own line; template literals and
    block comments must close before the end of input.
    """
    _, problems = _scan(source)
    if not problems:
        return []

    index = LineIndex(source)
    diagnostics = []
    for problem in problems:
        line, column = index.position(problem.offset)
        if problem.kind == "comment":
            message = "Unterminated block comment"
            code = "unterminated-comment"
        else:
            message = f"Unterminated {_QUOTE_NAMES[problem.kind]}"
            code = "unterminated-string"
        diagnostics.append(Diagnostic(line, column, message, Severity.ERROR, code))
    return diagnostics
