"""Tests for the bracket matcher."""

import pytest

from dosage_lint.brackets import check_brackets
from dosage_lint.sanitizer import sanitize


def check(source):
    return check_brackets(sanitize(source))


class TestBalanced:
    @pytest.mark.parametrize("source", [
        "",
        "()",
        "{[()]}",
        "function f(a) { if (a) { return [1, 2]; } }",
        "var o = { list: [ (1 + 2) * 3 ] };",
        "a\n(\nb\n)\n",
    ])
    def test_no_diagnostics(self, source):
        assert check(source) == []

    def test_brackets_in_strings_and_comments_ignored(self):
        assert check('var s = "(("; // }\n/* ] */ var t = \'{\';') == []


class TestUnbalanced:
    def test_unexpected_closer(self):
        diags = check("a = 1; }")
        assert len(diags) == 1
        assert diags[0].message == "Unexpected closing bracket '}'"
        assert (diags[0].line, diags[0].column) == (1, 8)
        assert diags[0].code == "bracket-unexpected"

    def test_unclosed_at_end(self):
        diags = check("f(1, [2, 3]")
        assert len(diags) == 1
        assert diags[0].message == "Unclosed bracket '(', expected ')'"
        assert diags[0].column == 2

    def test_unclosed_paren_inside_block_recovers(self):
        diags = check("if (x > 1 { }")
        assert len(diags) == 1
        assert diags[0].message == "Unclosed bracket '(', expected ')'"
        assert (diags[0].line, diags[0].column) == (1, 4)

    def test_skipped_frames_reported_and_dropped(self):
        diags = check("{ [ ( }")
        assert [d.message for d in diags] == [
            "Unclosed bracket '(', expected ')'",
            "Unclosed bracket '[', expected ']'",
        ]

    def test_mismatch_without_recovery(self):
        diags = check("( ]")
        assert [d.message for d in diags] == [
            "Bracket mismatch, expected ')' but found ']'",
            "Unclosed bracket '(', expected ')'",
        ]
        assert diags[0].code == "bracket-mismatch"

    def test_positions_on_later_lines(self):
        diags = check("var a = 1;\n  var b = [1, 2;\n")
        assert len(diags) == 1
        assert (diags[0].line, diags[0].column) == (2, 11)

    def test_multiple_unclosed_reported_in_stack_order(self):
        diags = check("{ (")
        assert [(d.line, d.column) for d in diags] == [(1, 1), (1, 3)]
