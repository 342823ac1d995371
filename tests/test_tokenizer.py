"""Tests for the tokenizer and its token-stream helpers."""

from dosage_lint.sanitizer import sanitize
from dosage_lint.tokenizer import (
    TokenKind,
    is_object_key,
    is_property_access,
    matching_close,
    token_range,
    tokenize,
)


def texts(source):
    return [t.text for t in tokenize(sanitize(source))]


class TestTokenize:
    def test_basic_statement(self):
        assert texts("var dose = weight * 10;") == ["var", "dose", "=", "weight", "*", "10", ";"]

    def test_multi_char_operators(self):
        assert texts("a === b !== c => d >>>= e") == [
            "a", "===", "b", "!==", "c", "=>", "d", ">>>=", "e",
        ]

    def test_compound_assignment_is_single_token(self):
        assert texts("sum += i") == ["sum", "+=", "i"]

    def test_numbers(self):
        tokens = tokenize("1 2.5 0x1F 1e-3 .5")
        assert [t.kind for t in tokens] == [TokenKind.NUMBER] * 5
        assert [t.text for t in tokens] == ["1", "2.5", "0x1F", "1e-3", ".5"]

    def test_strings_are_single_tokens(self):
        tokens = tokenize(sanitize('f("a, b", \'c\')'))
        strings = [t for t in tokens if t.kind is TokenKind.STRING]
        assert len(strings) == 2
        assert strings[0].start == 2

    def test_comments_skipped(self):
        assert texts("a // b c\n/* d */ e") == ["a", "e"]

    def test_positions(self):
        tokens = tokenize("var a;\n  b = 1;")
        b = tokens[3]
        assert b.text == "b"
        assert (b.line, b.column) == (2, 3)
        assert b.start == 9
        assert b.newline_before is True
        assert tokens[1].newline_before is False

    def test_unknown_character(self):
        tokens = tokenize("a # b")
        assert tokens[1].kind is TokenKind.OTHER

    def test_identifiers_with_dollar_and_underscore(self):
        assert texts("$el _tmp a1") == ["$el", "_tmp", "a1"]


class TestHelpers:
    def test_matching_close(self):
        tokens = tokenize("f(a, (b), [c])")
        assert matching_close(tokens, 1) == len(tokens) - 1

    def test_matching_close_unbalanced(self):
        tokens = tokenize("f(a, (b)")
        assert matching_close(tokens, 1) is None

    def test_property_access(self):
        tokens = tokenize("obj.prop")
        assert is_property_access(tokens, 0)
        assert is_property_access(tokens, 2)

    def test_object_key(self):
        tokens = tokenize("var o = { a: 1, b: x };")
        a = next(i for i, t in enumerate(tokens) if t.text == "a")
        x = next(i for i, t in enumerate(tokens) if t.text == "x")
        assert is_object_key(tokens, a)
        assert not is_object_key(tokens, x)

    def test_ternary_branch_is_not_object_key(self):
        tokens = tokenize("c ? a : b")
        assert not is_object_key(tokens, 2)

    def test_token_range(self):
        source = "if (a > b) { c(); }"
        tokens = tokenize(source)
        inside = [tokens[i].text for i in token_range(tokens, 4, 9)]
        assert inside == ["a", ">", "b"]
