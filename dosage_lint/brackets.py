"""
Bracket Matcher
===============
Stack-based check for unexpected, mismatched and unclosed delimiters.
Runs on sanitized text so brackets inside strings and comments are
already gone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from dosage_lint.diagnostics import Diagnostic, Severity

PAIRS = {"(": ")", "[": "]", "{": "}"}
CLOSERS = frozenset(PAIRS.values())


@dataclass
class _Frame:
    char: str
    expected: str
    line: int
    column: int


def _unclosed(frame: _Frame) -> Diagnostic:
    return Diagnostic(
        frame.line,
        frame.column,
        f"Unclosed bracket '{frame.char}', expected '{frame.expected}'",
        Severity.ERROR,
        "bracket-unclosed",
    )


def check_brackets(sanitized: str) -> List[Diagnostic]:
    """Return structural diagnostics for *sanitized* text.

    When a closer does not match the top of the stack, frames further down
    are searched; if one expects this closer, every frame above it is
    reported as unclosed and dropped.  Otherwise a mismatch is reported and
    the stack is left alone.
    """
    stack: List[_Frame] = []
    diagnostics: List[Diagnostic] = []
    line, column = 1, 0

    for ch in sanitized:
        if ch == "\n":
            line += 1
            column = 0
            continue
        column += 1

        if ch in PAIRS:
            stack.append(_Frame(ch, PAIRS[ch], line, column))
            continue
        if ch not in CLOSERS:
            continue

        if not stack:
            diagnostics.append(Diagnostic(
                line, column, f"Unexpected closing bracket '{ch}'",
                Severity.ERROR, "bracket-unexpected",
            ))
            continue

        if stack[-1].expected == ch:
            stack.pop()
            continue

        match_at = -1
        for i in range(len(stack) - 2, -1, -1):
            if stack[i].expected == ch:
                match_at = i
                break

        if match_at >= 0:
            for frame in reversed(stack[match_at + 1:]):
                diagnostics.append(_unclosed(frame))
            del stack[match_at:]
        else:
            diagnostics.append(Diagnostic(
                line, column,
                f"Bracket mismatch, expected '{stack[-1].expected}' but found '{ch}'",
                Severity.ERROR, "bracket-mismatch",
            ))

    for frame in stack:
        diagnostics.append(_unclosed(frame))
    return diagnostics
