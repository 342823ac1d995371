"""
Call-Site & Control-Flow Validator
==================================
Finds ``if/switch/while/for/catch (...)`` headers and ``name(...)`` calls,
extracts their balanced argument text, and checks:

- control-flow conditions are present and only reference known names,
- ``catch`` binds a single valid identifier,
- calls to registered or script-declared functions pass an acceptable
  number of arguments,
- every argument is well formed.

Call sites are located on the sanitized text; argument text is sliced from
the original source at the same offsets so string arguments keep their
contents.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, Iterable, List, Optional

from dosage_lint.diagnostics import Diagnostic, LineIndex, Severity, undefined_variable_message
from dosage_lint.language import (
    GLOBAL_OBJECTS,
    HEADER_KEYWORDS,
    FunctionRegistry,
    FunctionSignature,
    is_array_method,
    is_builtin_function,
    is_keyword,
    is_valid_identifier,
)
from dosage_lint.sanitizer import QUOTES, sanitize
from dosage_lint.scopes import ScopeTree
from dosage_lint.tokenizer import (
    Token,
    TokenKind,
    is_call,
    is_object_key,
    is_property_access,
    matching_close,
    token_range,
    tokenize,
)

logger = logging.getLogger("dosage_lint.calls")

DECIMAL_RE = re.compile(r"^\d+(\.\d+)?([eE][+-]?\d+)?$")
HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")
FUNCTION_CALL_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*\s*\(.*\)$", re.DOTALL)
ARRAY_METHOD_RE = re.compile(r"^\s*\[[^\]]*\]\s*\.\s*[A-Za-z_$][A-Za-z0-9_$]*\s*\(")
FUNCTION_EXPRESSION_RE = re.compile(r"^(?:async\s+)?function\b")
FOR_IN_OF_RE = re.compile(
    r"^\s*(?:var|let|const)?\s*([A-Za-z_$][A-Za-z0-9_$]*)\s+(?:in|of)\s+(.+)$",
    re.DOTALL,
)

EXPRESSION_OPERATORS = (
    "===", "!==", "==", "!=", ">=", "<=", "&&", "||",
    "+", "-", "*", "/", "%", ">", "<",
)

# Operand tokens that may legitimately sit next to another operand.
_PREFIX_WORDS = frozenset({"new", "typeof", "void", "delete", "await", "in", "of", "instanceof"})


@dataclass(frozen=True)
class Argument:
    """One top-level argument of a call."""
    text: str
    start: int


@dataclass(frozen=True)
class FunctionCallSite:
    """A located call or control-flow header.

    Attributes:
        name: Callee name or control-flow keyword.
        raw_argument_text: Text between the parentheses, from the original
            source.
        start: Offset of the name.
        argument_start: Offset just after ``(``.
        is_control_flow: Whether ``name`` is ``if/switch/while/for/catch``.
        is_method_call: Whether the call is ``obj.name(...)``.
        closed: Whether a matching ``)`` was found.
    """

    name: str
    raw_argument_text: str
    start: int
    argument_start: int
    is_control_flow: bool = False
    is_method_call: bool = False
    closed: bool = True

    @property
    def argument_end(self) -> int:
        return self.argument_start + len(self.raw_argument_text)


class ArgumentKind(Enum):
    EMPTY = "empty"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    ARRAY = "array"
    OBJECT = "object"
    FUNCTION = "function"
    CALL = "call"
    EXPRESSION = "expression"
    KNOWN_IDENTIFIER = "known_identifier"
    UNKNOWN_IDENTIFIER = "unknown_identifier"
    INVALID_CHARACTERS = "invalid_characters"
    INVALID = "invalid"


# ---------------------------------------------------------------------------
# Locating call sites
# ---------------------------------------------------------------------------

def find_call_sites(
    source: str,
    sanitized: str,
    tokens: Optional[List[Token]] = None,
    tree: Optional[ScopeTree] = None,
) -> List[FunctionCallSite]:
    """Locate control-flow headers and calls in order of appearance.

    Function declaration names and method shorthand definitions are not
    calls.  When *tree* is given its method sites are used; otherwise a
    ``)`` directly followed by ``{`` marks a definition.
    """
    if tokens is None:
        tokens = tokenize(sanitized)

    sites: List[FunctionCallSite] = []
    for i, tok in enumerate(tokens):
        if tok.kind is not TokenKind.IDENT or not is_call(tokens, i):
            continue

        is_control_flow = tok.text in HEADER_KEYWORDS
        if not is_control_flow:
            if is_keyword(tok.text):
                continue
            if i > 0 and tokens[i - 1].is_ident("function"):
                continue
            if tree is not None and tok.start in tree.method_sites:
                continue

        paren = tokens[i + 1]
        close = matching_close(tokens, i + 1)
        if tree is None and not is_control_flow and close is not None:
            if close + 1 < len(tokens) and tokens[close + 1].is_punct("{"):
                continue

        argument_start = paren.end
        argument_end = tokens[close].start if close is not None else len(source)
        sites.append(FunctionCallSite(
            name=tok.text,
            raw_argument_text=source[argument_start:argument_end],
            start=tok.start,
            argument_start=argument_start,
            is_control_flow=is_control_flow,
            is_method_call=i > 0 and tokens[i - 1].is_punct(".", "?."),
            closed=close is not None,
        ))
    return sites


def split_arguments(raw: str, sanitized: Optional[str] = None, base: int = 0) -> List[Argument]:
    """Split argument text on top-level commas.

    Commas nested in ``()[]{}`` or inside string literals do not split.  A
    blank argument list yields no arguments; a trailing comma yields an
    empty final argument.

    Args:
        raw: Argument text from the original source.
        sanitized: Same span of sanitized text; computed when omitted.
        base: Offset of ``raw[0]`` in the document.
    """
    if sanitized is None:
        sanitized = sanitize(raw)
    if not raw.strip():
        return []

    arguments: List[Argument] = []
    depth = 0
    seg_start = 0

    def emit(end: int) -> None:
        text = raw[seg_start:end]
        stripped = text.lstrip()
        offset = seg_start + (len(text) - len(stripped))
        arguments.append(Argument(stripped.rstrip(), base + offset))

    for i, ch in enumerate(sanitized):
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth == 0:
            emit(i)
            seg_start = i + 1
    emit(len(raw))
    return arguments


# ---------------------------------------------------------------------------
# Argument classification
# ---------------------------------------------------------------------------

def _is_string_literal(text: str) -> bool:
    return len(text) >= 2 and text[0] in QUOTES and text[-1] == text[0]


def _encloses(text: str, opener: str, closer: str) -> bool:
    """True if *text* starts with *opener* whose match is the final char."""
    if not (text.startswith(opener) and text.endswith(closer)):
        return False
    depth = 0
    for i, ch in enumerate(sanitize(text)):
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i == len(text) - 1
    return False


def _looks_like_expression(text: str) -> bool:
    """Loose well-formedness check: no stray characters, no two operands in a row."""
    prev: Optional[Token] = None
    for tok in tokenize(sanitize(text)):
        if tok.kind is TokenKind.OTHER:
            return False
        operand = tok.kind in (TokenKind.IDENT, TokenKind.NUMBER, TokenKind.STRING)
        if operand and prev is not None:
            prev_operand = prev.kind in (TokenKind.IDENT, TokenKind.NUMBER, TokenKind.STRING)
            if prev_operand and prev.text not in _PREFIX_WORDS and tok.text not in _PREFIX_WORDS:
                return False
        prev = tok
    return prev is not None


def classify_argument(text: str, is_known: Callable[[str], bool] = lambda name: False) -> ArgumentKind:
    """Classify one argument's text.

    Args:
        text: Argument text (already stripped).
        is_known: Predicate telling whether a bare identifier is declared.
    """
    text = text.strip()
    if not text:
        return ArgumentKind.EMPTY
    if _is_string_literal(text):
        return ArgumentKind.STRING
    if DECIMAL_RE.match(text) or HEX_RE.match(text):
        return ArgumentKind.NUMBER
    if text in ("true", "false"):
        return ArgumentKind.BOOLEAN
    if text in ("null", "undefined"):
        return ArgumentKind.NULL
    if _encloses(text, "[", "]"):
        return ArgumentKind.ARRAY
    if _encloses(text, "{", "}"):
        return ArgumentKind.OBJECT
    if ARRAY_METHOD_RE.match(text):
        return ArgumentKind.EXPRESSION
    if FUNCTION_EXPRESSION_RE.match(text) or "=>" in sanitize(text):
        return ArgumentKind.FUNCTION
    if FUNCTION_CALL_RE.match(text):
        return ArgumentKind.CALL

    blanked = sanitize(text)
    if (
        any(op in blanked for op in EXPRESSION_OPERATORS)
        or blanked.startswith("!")
        or "." in blanked
        or "?" in blanked
    ):
        return ArgumentKind.EXPRESSION

    if is_valid_identifier(text):
        if is_keyword(text) or is_known(text):
            return ArgumentKind.KNOWN_IDENTIFIER
        return ArgumentKind.UNKNOWN_IDENTIFIER

    if any(ord(ch) > 127 and not ch.isalnum() for ch in text):
        return ArgumentKind.INVALID_CHARACTERS
    if _looks_like_expression(text):
        return ArgumentKind.EXPRESSION
    return ArgumentKind.INVALID


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class CallSiteValidator:
    """Validates call sites against the function registry and scope tree.

    Args:
        registry: Custom helper signatures.
        tree: Scope tree of the document.
        parameters: Calculator parameter names (always known).
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        tree: ScopeTree,
        parameters: Iterable[str] = (),
    ):
        self.registry = registry
        self.tree = tree
        self.parameters: FrozenSet[str] = frozenset(parameters)
        self._globals = registry.global_names()

    def is_known(self, name: str, position: int) -> bool:
        return (
            name in self.parameters
            or name in self._globals
            or is_builtin_function(name)
            or self.tree.is_visible(name, position)
        )

    def signature_for(self, name: str) -> Optional[FunctionSignature]:
        return self.tree.functions.get(name) or self.registry.get(name)

    def validate(
        self,
        source: str,
        sanitized: str,
        tokens: List[Token],
        index: Optional[LineIndex] = None,
    ) -> List[Diagnostic]:
        index = index or LineIndex(source)
        diagnostics: List[Diagnostic] = []
        for site in find_call_sites(source, sanitized, tokens, self.tree):
            if not site.closed:
                # Already reported by the bracket matcher.
                continue
            if site.is_control_flow:
                diagnostics.extend(self._validate_control_flow(site, sanitized, tokens, index))
            else:
                diagnostics.extend(self._validate_call(site, sanitized, index))
        return diagnostics

    # -- control flow -------------------------------------------------------

    def _validate_control_flow(
        self, site: FunctionCallSite, sanitized: str, tokens: List[Token], index: LineIndex
    ) -> List[Diagnostic]:
        keyword = site.name
        condition = site.raw_argument_text

        if not condition.strip():
            line, column = index.position(site.start)
            kind = "clause" if keyword == "catch" else "statement"
            what = "binding" if keyword == "catch" else "condition"
            return [Diagnostic(
                line, column, f"'{keyword}' {kind} is missing a {what}",
                Severity.ERROR, "missing-condition",
            )]

        if keyword == "catch":
            binding = condition.strip()
            if is_valid_identifier(binding) and not is_keyword(binding):
                return []
            offset = site.argument_start + (len(condition) - len(condition.lstrip()))
            line, column = index.position(offset)
            return [Diagnostic(
                line, column, f"Invalid catch parameter: {binding}",
                Severity.ERROR, "invalid-catch",
            )]

        skip_offsets = set()
        if keyword == "for":
            clauses = sanitized[site.argument_start:site.argument_end]
            if ";" not in clauses:
                match = FOR_IN_OF_RE.match(condition)
                if match:
                    skip_offsets.add(site.argument_start + match.start(1))

        return self._check_free_identifiers(
            tokens, site.argument_start, site.argument_end, skip_offsets, index
        )

    def _check_free_identifiers(
        self,
        tokens: List[Token],
        start: int,
        end: int,
        skip_offsets: Iterable[int],
        index: LineIndex,
    ) -> List[Diagnostic]:
        skip = set(skip_offsets) | self.tree.declaration_sites
        diagnostics = []
        for i in token_range(tokens, start, end):
            tok = tokens[i]
            if tok.kind is not TokenKind.IDENT or tok.start in skip:
                continue
            if is_keyword(tok.text) or tok.text in GLOBAL_OBJECTS:
                continue
            if is_property_access(tokens, i) or is_call(tokens, i) or is_object_key(tokens, i):
                continue
            if self.is_known(tok.text, tok.start):
                continue
            diagnostics.append(Diagnostic(
                tok.line, tok.column, undefined_variable_message(tok.text),
                Severity.WARNING, "undefined-variable",
            ))
        return diagnostics

    # -- ordinary calls -----------------------------------------------------

    def _validate_call(self, site: FunctionCallSite, sanitized: str, index: LineIndex) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        arguments = split_arguments(
            site.raw_argument_text,
            sanitized[site.argument_start:site.argument_end],
            site.argument_start,
        )

        if site.is_method_call:
            # Array callbacks and values are left to the identifier resolver.
            if is_array_method(site.name):
                return diagnostics
        else:
            signature = self.signature_for(site.name)
            if signature is not None:
                diagnostics.extend(self._check_arity(site, signature, len(arguments), index))

        for argument in arguments:
            diag = self._check_argument(argument, index)
            if diag is not None:
                diagnostics.append(diag)
        return diagnostics

    def _check_arity(
        self, site: FunctionCallSite, signature: FunctionSignature, provided: int, index: LineIndex
    ) -> List[Diagnostic]:
        line, column = index.position(site.start)
        if provided < signature.required_count:
            return [Diagnostic(
                line, column,
                f"Function {site.name} requires at least {signature.required_count} "
                f"arguments, {provided} provided",
                Severity.ERROR, "arity-too-few",
            )]
        if provided > signature.total_count:
            return [Diagnostic(
                line, column,
                f"Function {site.name} accepts at most {signature.total_count} "
                f"arguments, {provided} provided",
                Severity.WARNING, "arity-too-many",
            )]
        return []

    def _check_argument(self, argument: Argument, index: LineIndex) -> Optional[Diagnostic]:
        kind = classify_argument(argument.text, lambda name: self.is_known(name, argument.start))
        line, column = index.position(argument.start)

        if kind is ArgumentKind.EMPTY:
            return Diagnostic(line, column, "Missing argument", Severity.ERROR, "missing-argument")
        if kind is ArgumentKind.UNKNOWN_IDENTIFIER:
            return Diagnostic(
                line, column, undefined_variable_message(argument.text),
                Severity.WARNING, "undefined-variable",
            )
        if kind is ArgumentKind.INVALID_CHARACTERS:
            return Diagnostic(
                line, column, f"Invalid characters in argument: {argument.text}",
                Severity.ERROR, "invalid-argument",
            )
        if kind is ArgumentKind.INVALID:
            return Diagnostic(
                line, column, f"Invalid argument: {argument.text}",
                Severity.ERROR, "invalid-argument",
            )
        return None


def validate_call_sites(
    source: str,
    sanitized: str,
    tokens: List[Token],
    tree: ScopeTree,
    registry: Optional[FunctionRegistry] = None,
    parameters: Iterable[str] = (),
) -> List[Diagnostic]:
    """Convenience wrapper around :class:`CallSiteValidator`."""
    validator = CallSiteValidator(registry or FunctionRegistry(), tree, parameters)
    return validator.validate(source, sanitized, tokens)
