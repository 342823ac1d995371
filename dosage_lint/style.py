"""
Style Checks
============
Line-based advisory checks run over sanitized text:

- ``return``/``break``/``continue``/``throw`` statements without ``;``
- loose comparison against ``null`` / ``undefined``
- ``while (true)`` loops
- both quote styles on one line
"""

from __future__ import annotations

import re
from typing import List, Optional

from dosage_lint.diagnostics import Diagnostic, Severity

MISSING_SEMICOLON_RE = re.compile(
    r"^\s*(return\s+[^;]+|return|break|continue|throw\s+[^;]+)\s*$"
)
LOOSE_NULL_COMPARE_RE = re.compile(r"(?<![=!])[=!]=\s*(?:null|undefined)\b")
INFINITE_LOOP_RE = re.compile(r"\bwhile\s*\(\s*true\s*\)")
_INLINE_COMMENT_RE = re.compile(r"/\*.*?\*/")

# A statement ending with one of these continues on the next line.
_CONTINUATION_CHARS = "{([,+-*/%&|?:=.<>!"


def _code_part(line: str) -> str:
    """Strip comments from a sanitized line, keeping columns."""
    # Closing line of a block comment opened on an earlier line.
    end = line.find("*/")
    if end >= 0 and "/*" not in line[:end]:
        line = " " * (end + 2) + line[end + 2:]
    line = _INLINE_COMMENT_RE.sub(lambda m: " " * len(m.group()), line)
    cut = line.find("//")
    if cut >= 0:
        line = line[:cut]
    start = line.find("/*")
    if start >= 0:
        line = line[:start]
    return line


class StyleChecker:
    """Runs the enabled style rules.

    Args:
        rules: ``RulesConfig`` instance; every rule is enabled when omitted.
    """

    def __init__(self, rules=None):
        self.missing_semicolon = True
        self.loose_equality = True
        self.infinite_loop = True
        self.quote_consistency = True
        if rules is not None:
            self.missing_semicolon = rules.check_missing_semicolon
            self.loose_equality = rules.check_loose_equality
            self.infinite_loop = rules.check_infinite_loop
            self.quote_consistency = rules.check_quote_consistency

    def check(self, sanitized: str) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        for number, raw_line in enumerate(sanitized.split("\n"), start=1):
            line = raw_line.rstrip("\r")
            code = _code_part(line)
            if not code.strip():
                continue

            if self.missing_semicolon:
                diag = self._missing_semicolon(code, number)
                if diag:
                    diagnostics.append(diag)

            if self.loose_equality:
                match = LOOSE_NULL_COMPARE_RE.search(code)
                if match:
                    diagnostics.append(Diagnostic(
                        number, match.start() + 1,
                        "Use === or !== for strict comparison",
                        Severity.WARNING, "loose-equality",
                    ))

            if self.infinite_loop:
                match = INFINITE_LOOP_RE.search(code)
                if match:
                    diagnostics.append(Diagnostic(
                        number, match.start() + 1, "Possible infinite loop",
                        Severity.WARNING, "infinite-loop",
                    ))

            if self.quote_consistency and "\"" in code and "'" in code:
                diagnostics.append(Diagnostic(
                    number, 1, "Use one quote style per line",
                    Severity.INFO, "mixed-quotes",
                ))
        return diagnostics

    @staticmethod
    def _missing_semicolon(code: str, number: int) -> Optional[Diagnostic]:
        stripped = code.strip()
        if stripped[-1] in _CONTINUATION_CHARS or stripped[-1] in "};":
            return None
        if not MISSING_SEMICOLON_RE.match(stripped):
            return None
        if stripped.startswith(("return", "throw")) and stripped.count("(") != stripped.count(")"):
            return None
        return Diagnostic(
            number, len(code.rstrip()), "Missing semicolon",
            Severity.WARNING, "missing-semicolon",
        )


def check_style(sanitized: str, rules=None) -> List[Diagnostic]:
    return StyleChecker(rules).check(sanitized)
