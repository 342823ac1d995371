"""
Identifier Resolver
===================
Cross-references identifier tokens against the scope tree, the calculator
parameters and the function registries.

Pass A reports plain assignments to names that were never declared and
treats each such name as implicitly declared from that point on.  Pass B
reports every remaining free identifier as an undefined variable, or as an
undefined function when it is called.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, List

from dosage_lint.diagnostics import Diagnostic, Severity, undefined_variable_message
from dosage_lint.language import FunctionRegistry, is_builtin_function, is_keyword
from dosage_lint.scopes import ScopeTree
from dosage_lint.tokenizer import (
    Token,
    TokenKind,
    is_call,
    is_object_key,
    is_property_access,
    is_property_name,
)

logger = logging.getLogger("dosage_lint.resolver")


def _is_plain_assignment_target(tokens: List[Token], i: int) -> bool:
    return i + 1 < len(tokens) and tokens[i + 1].is_punct("=")


class IdentifierResolver:
    """Flags unknown reads and undeclared writes.

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

    def _is_declared(self, name: str, position: int) -> bool:
        return (
            name in self.parameters
            or name in self._globals
            or self.tree.is_visible(name, position)
        )

    def resolve(self, tokens: List[Token]) -> List[Diagnostic]:
        implicit: Dict[str, int] = {}
        diagnostics = self._undeclared_assignments(tokens, implicit)
        diagnostics.extend(self._undefined_references(tokens, implicit))
        return diagnostics

    def _undeclared_assignments(self, tokens: List[Token], implicit: Dict[str, int]) -> List[Diagnostic]:
        diagnostics = []
        sites = self.tree.declaration_sites
        for i, tok in enumerate(tokens):
            if tok.kind is not TokenKind.IDENT or is_keyword(tok.text):
                continue
            if not _is_plain_assignment_target(tokens, i):
                continue
            if tok.start in sites or is_property_name(tokens, i):
                continue
            if tok.text in implicit or self._is_declared(tok.text, tok.start):
                continue
            implicit[tok.text] = tok.start
            diagnostics.append(Diagnostic(
                tok.line,
                tok.column,
                f"Variable '{tok.text}' is assigned without declaration (use var, let or const)",
                Severity.ERROR,
                "undeclared-assignment",
            ))
        return diagnostics

    def _undefined_references(self, tokens: List[Token], implicit: Dict[str, int]) -> List[Diagnostic]:
        diagnostics = []
        sites = self.tree.declaration_sites
        methods = self.tree.method_sites
        for i, tok in enumerate(tokens):
            if tok.kind is not TokenKind.IDENT or is_keyword(tok.text):
                continue
            if tok.start in sites or tok.start in methods:
                continue
            if is_property_access(tokens, i) or is_object_key(tokens, i):
                continue
            if _is_plain_assignment_target(tokens, i):
                continue
            name = tok.text
            if self._is_declared(name, tok.start):
                continue
            if name in implicit and implicit[name] <= tok.start:
                continue

            if is_call(tokens, i):
                if name in self.registry or is_builtin_function(name):
                    continue
                diagnostics.append(Diagnostic(
                    tok.line, tok.column, f"Undefined function: {name}",
                    Severity.WARNING, "undefined-function",
                ))
            else:
                diagnostics.append(Diagnostic(
                    tok.line, tok.column, undefined_variable_message(name),
                    Severity.WARNING, "undefined-variable",
                ))
        return diagnostics


def resolve_identifiers(
    tokens: List[Token],
    tree: ScopeTree,
    registry: FunctionRegistry = None,
    parameters: Iterable[str] = (),
) -> List[Diagnostic]:
    """Convenience wrapper around :class:`IdentifierResolver`."""
    resolver = IdentifierResolver(registry or FunctionRegistry(), tree, parameters)
    return resolver.resolve(tokens)
