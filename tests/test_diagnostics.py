"""Tests for diagnostic records and summaries."""

import pytest

from dosage_lint.diagnostics import (
    Diagnostic,
    LineIndex,
    Severity,
    count_by_severity,
    dedupe,
    summarize,
)


def diag(line=1, column=1, message="m", severity=Severity.ERROR, code=""):
    return Diagnostic(line, column, message, severity, code)


class TestDiagnostic:
    def test_is_immutable(self):
        d = diag()
        with pytest.raises(Exception):
            d.line = 2

    def test_str(self):
        assert str(diag(3, 7, "Missing semicolon", Severity.WARNING)) == "3:7 warning Missing semicolon"

    def test_to_dict(self):
        assert diag(2, 4, "x", Severity.INFO, "mixed-quotes").to_dict() == {
            "line": 2,
            "column": 4,
            "message": "x",
            "severity": "info",
            "code": "mixed-quotes",
        }


class TestLineIndex:
    def test_positions(self):
        index = LineIndex("ab\ncd\n\nef")
        assert index.position(0) == (1, 1)
        assert index.position(1) == (1, 2)
        assert index.position(3) == (2, 1)
        assert index.position(6) == (3, 1)
        assert index.position(7) == (4, 1)

    def test_newline_belongs_to_its_line(self):
        assert LineIndex("ab\ncd").position(2) == (1, 3)

    def test_line_start_and_count(self):
        index = LineIndex("a\nbb\nccc")
        assert index.line_count == 3
        assert index.line_start(3) == 5

    def test_empty_text(self):
        index = LineIndex("")
        assert index.line_count == 1
        assert index.position(0) == (1, 1)


class TestDedupe:
    def test_keeps_first_occurrence_order(self):
        a = diag(1, 1, "a")
        b = diag(2, 1, "b")
        assert dedupe([a, b, diag(1, 1, "a"), b]) == [a, b]

    def test_severity_and_position_distinguish(self):
        items = [diag(1, 1, "a"), diag(1, 1, "a", Severity.WARNING), diag(1, 2, "a")]
        assert len(dedupe(items)) == 3

    def test_code_does_not_distinguish(self):
        assert len(dedupe([diag(code="x"), diag(code="y")])) == 1


class TestSummarize:
    @pytest.mark.parametrize("severities, expected", [
        ([], "No problems found"),
        ([Severity.ERROR], "1 error"),
        ([Severity.ERROR, Severity.ERROR, Severity.WARNING], "2 errors, 1 warning"),
        ([Severity.WARNING, Severity.WARNING], "2 warnings"),
        ([Severity.INFO, Severity.INFO], "2 info"),
        ([Severity.ERROR, Severity.WARNING, Severity.INFO], "1 error, 1 warning, 1 info"),
    ])
    def test_wording(self, severities, expected):
        assert summarize([diag(severity=s) for s in severities]) == expected

    def test_count_by_severity(self):
        counts = count_by_severity([diag(), diag(severity=Severity.INFO)])
        assert counts == {"error": 1, "warning": 0, "info": 1}
