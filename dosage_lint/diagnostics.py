"""
Diagnostics
===========
Diagnostic records shared by every analyzer, plus the helpers that turn
offsets into 1-based line/column pairs and summarise a diagnostic set.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Sequence


class Severity(Enum):
    """How serious a diagnostic is."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Diagnostic:
    """A single reported issue.

    Attributes:
        line: 1-based line in the user's source.
        column: 1-based column in the user's source.
        message: Human-readable description.
        severity: :class:`Severity` of the issue.
        code: Stable rule id (e.g. ``"bracket-unclosed"``).
    """

    line: int
    column: int
    message: str
    severity: Severity = Severity.ERROR
    code: str = ""

    def __str__(self) -> str:
        return f"{self.line}:{self.column} {self.severity.value} {self.message}"

    def to_dict(self) -> dict:
        return {
            "line": self.line,
            "column": self.column,
            "message": self.message,
            "severity": self.severity.value,
            "code": self.code,
        }


class DosageLintError(Exception):
    """Base class for errors raised by this package."""


class LineIndex:
    """Maps string offsets to 1-based (line, column) pairs."""

    def __init__(self, text: str):
        self._starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._starts.append(i + 1)

    def position(self, offset: int) -> tuple[int, int]:
        """Return the 1-based ``(line, column)`` of *offset*."""
        idx = bisect.bisect_right(self._starts, offset) - 1
        return idx + 1, offset - self._starts[idx] + 1

    def line_start(self, line: int) -> int:
        """Return the offset where 1-based *line* begins."""
        return self._starts[line - 1]

    @property
    def line_count(self) -> int:
        return len(self._starts)


def undefined_variable_message(name: str) -> str:
    # Shared by the call-site validator and the resolver so duplicates collapse.
    return f"Undefined variable: {name}"


def dedupe(diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
    """Drop repeated diagnostics, keeping the first occurrence's order."""
    seen = set()
    unique: List[Diagnostic] = []
    for diag in diagnostics:
        key = (diag.line, diag.column, diag.message, diag.severity)
        if key in seen:
            continue
        seen.add(key)
        unique.append(diag)
    return unique


def count_by_severity(diagnostics: Sequence[Diagnostic]) -> dict[str, int]:
    counts = {severity.value: 0 for severity in Severity}
    for diag in diagnostics:
        counts[diag.severity.value] += 1
    return counts


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def summarize(diagnostics: Sequence[Diagnostic]) -> str:
    """Human-readable counts by severity, e.g. ``"2 errors, 1 warning"``."""
    counts = count_by_severity(diagnostics)
    parts = []
    if counts["error"]:
        parts.append(_plural(counts["error"], "error"))
    if counts["warning"]:
        parts.append(_plural(counts["warning"], "warning"))
    if counts["info"]:
        parts.append(f"{counts['info']} info")
    if not parts:
        return "No problems found"
    return ", ".join(parts)
