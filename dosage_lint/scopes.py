"""
Scope Tree Builder
==================
Single pass over the token stream that delimits lexical scopes and
attributes every declaration to the scope it belongs to:

- ``var`` declarations hoist to the nearest enclosing function scope
  (or the root scope).
- ``let`` / ``const`` / ``class`` bind in the immediate scope.
- Function parameters, ``for`` loop bindings and ``catch`` bindings live
  in a scope that starts at the header's ``(`` so they are visible in the
  header as well as the body.
- Function declaration names go to the enclosing scope's
  ``function_names``; a named function expression sees its own name.

Scopes are stored in a flat list and refer to their parent by index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from dosage_lint.language import FunctionSignature, ParameterSpec, is_keyword
from dosage_lint.tokenizer import Token, TokenKind, matching_close

logger = logging.getLogger("dosage_lint.scopes")


@dataclass
class Scope:
    """One lexical scope.

    Attributes:
        id: Index of this scope in :attr:`ScopeTree.scopes`.
        start: Offset where the scope begins.
        end: Offset just past the scope's last character.
        level: Nesting depth (root is 0).
        parent: Index of the parent scope, ``None`` for the root.
        is_function_scope: Whether ``var`` declarations hoist here.
        kind: ``"root"``, ``"block"``, ``"function"``, ``"for"`` or ``"catch"``.
    """

    id: int
    start: int
    end: int
    level: int
    parent: Optional[int]
    is_function_scope: bool = False
    kind: str = "block"
    block_vars: Set[str] = field(default_factory=set)
    function_vars: Set[str] = field(default_factory=set)
    function_names: Set[str] = field(default_factory=set)
    children: List[int] = field(default_factory=list)

    def contains(self, position: int) -> bool:
        return self.start <= position < self.end

    @property
    def declared(self) -> Set[str]:
        return self.block_vars | self.function_vars | self.function_names


class ScopeTree:
    """Result of :func:`build_scope_tree`.

    Attributes:
        scopes: All scopes; ``scopes[0]`` is the root.
        declaration_sites: Offsets of binding identifiers (declared names,
            parameters, function names).
        method_sites: Offsets of method shorthand names (``name() {}``).
        functions: Signatures of function declarations found in the script.
    """

    def __init__(
        self,
        scopes: List[Scope],
        declaration_sites: FrozenSet[int],
        method_sites: FrozenSet[int],
        functions: Dict[str, FunctionSignature],
    ):
        self.scopes = scopes
        self.declaration_sites = declaration_sites
        self.method_sites = method_sites
        self.functions = functions
        self._visible_cache: Dict[int, FrozenSet[str]] = {}

    @property
    def root(self) -> Scope:
        return self.scopes[0]

    def __len__(self) -> int:
        return len(self.scopes)

    def scope_at(self, position: int) -> Scope:
        """Return the innermost scope containing *position*."""
        scope = self.root
        while True:
            for child_id in scope.children:
                child = self.scopes[child_id]
                if child.contains(position):
                    scope = child
                    break
            else:
                return scope

    def children(self, scope_id: int) -> List[Scope]:
        return [self.scopes[i] for i in self.scopes[scope_id].children]

    def ancestors(self, scope_id: int) -> List[Scope]:
        """The scope itself followed by each parent up to the root."""
        chain = []
        current: Optional[int] = scope_id
        while current is not None:
            scope = self.scopes[current]
            chain.append(scope)
            current = scope.parent
        return chain

    def variables_in_scope(self, position: int) -> FrozenSet[str]:
        """Every name declared in the scope chain visible at *position*."""
        scope = self.scope_at(position)
        cached = self._visible_cache.get(scope.id)
        if cached is None:
            names: Set[str] = set()
            for s in self.ancestors(scope.id):
                names |= s.block_vars
                names |= s.function_names
                names |= s.function_vars
            cached = frozenset(names)
            self._visible_cache[scope.id] = cached
        return cached

    def is_visible(self, name: str, position: int) -> bool:
        return name in self.variables_in_scope(position)

    def all_identifiers(self) -> Set[str]:
        names: Set[str] = set()
        for scope in self.scopes:
            names |= scope.declared
        return names


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

# Modes of an open scope:
#   header    inside ``( ... )`` of a function/for/catch header
#   awaiting  header closed, body not started yet
#   brace     body delimited by ``{ ... }``
#   expr      expression-bodied arrow function
#   statement brace-less loop body, ends at ``;``
@dataclass
class _Open:
    scope_id: int
    mode: str
    nest: int = 0
    arrow: bool = False


@dataclass
class _Pending:
    kind: str
    name: Optional[Token] = None
    is_declaration: bool = False


_OPENERS = ("(", "[", "{")
_CLOSERS = (")", "]", "}")
_NON_CONTINUING = frozenset({")", "]", "}", "++", "--"})
_NON_CONTINUING_START = frozenset({"!", "~", "++", "--", "{", "}", ";"})


def _continues(prev: Token, tok: Token) -> bool:
    """Whether a line break between *prev* and *tok* keeps an expression going."""
    if prev.kind is TokenKind.PUNCT and prev.text not in _NON_CONTINUING:
        return True
    if tok.kind is TokenKind.PUNCT and tok.text not in _NON_CONTINUING_START:
        return True
    return False


def _matching_open(tokens: List[Token], close_idx: int) -> Optional[int]:
    depth = 0
    for i in range(close_idx, -1, -1):
        tok = tokens[i]
        if tok.is_punct(")"):
            depth += 1
        elif tok.is_punct("("):
            depth -= 1
            if depth == 0:
                return i
    return None


class _Builder:
    def __init__(self, tokens: List[Token], length: int):
        self.tokens = tokens
        self.scopes = [Scope(0, 0, length, 0, None, kind="root")]
        self.stack = [_Open(0, "brace")]
        self.nest = 0
        self.sites: Set[int] = set()
        self.method_sites: Set[int] = set()
        self.functions: Dict[str, FunctionSignature] = {}
        self.pending: Dict[int, _Pending] = {}
        self.arrow_starts = self._find_arrow_starts()

    # -- scope stack --------------------------------------------------------

    @property
    def top(self) -> _Open:
        return self.stack[-1]

    def _open(self, start: int, mode: str, kind: str, is_function: bool = False) -> Scope:
        parent = self.scopes[self.top.scope_id]
        scope = Scope(
            id=len(self.scopes),
            start=start,
            end=parent.end,
            level=parent.level + 1,
            parent=parent.id,
            is_function_scope=is_function,
            kind=kind,
        )
        self.scopes.append(scope)
        parent.children.append(scope.id)
        self.stack.append(_Open(scope.id, mode, self.nest))
        return scope

    def _close(self, end: int) -> None:
        entry = self.stack.pop()
        self.scopes[entry.scope_id].end = end

    def _function_scope(self) -> Scope:
        for entry in reversed(self.stack):
            scope = self.scopes[entry.scope_id]
            if scope.is_function_scope:
                return scope
        return self.scopes[0]

    def _declare(self, tok: Token, scope: Scope, bucket: str = "block_vars") -> None:
        getattr(scope, bucket).add(tok.text)
        self.sites.add(tok.start)

    # -- lookahead helpers --------------------------------------------------

    def _find_arrow_starts(self) -> Dict[int, str]:
        starts: Dict[int, str] = {}
        for i, tok in enumerate(self.tokens):
            if not tok.is_punct("=>") or i == 0:
                continue
            prev = self.tokens[i - 1]
            if prev.kind is TokenKind.IDENT and not is_keyword(prev.text):
                starts[i - 1] = "ident"
            elif prev.is_punct(")"):
                open_idx = _matching_open(self.tokens, i - 1)
                if open_idx is not None:
                    starts[open_idx] = "paren"
        return starts

    def _pattern_names(self, open_idx: int, close_idx: int) -> List[Token]:
        """Binding names inside a ``{...}`` or ``[...]`` destructuring pattern."""
        names = []
        for j in range(open_idx + 1, close_idx):
            tok = self.tokens[j]
            if tok.kind is not TokenKind.IDENT or is_keyword(tok.text):
                continue
            nxt = self.tokens[j + 1]
            prev = self.tokens[j - 1]
            if nxt.is_punct(",", "}", "]", "=") and not prev.is_punct("=", "."):
                names.append(tok)
        return names

    def _parameters(self, open_idx: int) -> Tuple[List[Token], List[ParameterSpec]]:
        """Binding tokens and signature entries of a parenthesised list."""
        tokens = self.tokens
        close = matching_close(tokens, open_idx)
        if close is None:
            close = len(tokens)

        bindings: List[Token] = []
        specs: List[ParameterSpec] = []
        segment: List[int] = []
        depth = 0
        for j in range(open_idx + 1, close + 1):
            tok = tokens[j] if j < len(tokens) else None
            if j == close or (depth == 0 and tok.is_punct(",")):
                if segment:
                    self._parameter_segment(segment, bindings, specs)
                segment = []
                continue
            if tok.is_punct(*_OPENERS):
                depth += 1
            elif tok.is_punct(*_CLOSERS):
                depth -= 1
            segment.append(j)
        return bindings, specs

    def _parameter_segment(self, segment: List[int], bindings: List[Token], specs: List[ParameterSpec]) -> None:
        tokens = self.tokens
        first = segment[0]
        rest = tokens[first].is_punct("...")
        if rest:
            segment = segment[1:]
            if not segment:
                return
            first = segment[0]

        depth = 0
        has_default = False
        for j in segment:
            tok = tokens[j]
            if tok.is_punct(*_OPENERS):
                depth += 1
            elif tok.is_punct(*_CLOSERS):
                depth -= 1
            elif depth == 0 and tok.is_punct("="):
                has_default = True
                break

        head = tokens[first]
        if head.kind is TokenKind.IDENT and not is_keyword(head.text):
            bindings.append(head)
            name = head.text
        elif head.is_punct("{", "["):
            close = matching_close(tokens, first)
            if close is None:
                return
            bindings.extend(self._pattern_names(first, close))
            name = f"arg{len(specs)}"
        else:
            return
        specs.append(ParameterSpec(name, optional=rest or has_default))

    def _skip_initializer(self, j: int) -> int:
        tokens = self.tokens
        depth = 0
        prev: Optional[Token] = None
        while j < len(tokens):
            tok = tokens[j]
            if depth == 0:
                if tok.is_punct(",", ";", *_CLOSERS) or tok.is_ident("in", "of"):
                    return j
                if prev is not None and tok.newline_before and not _continues(prev, tok):
                    return j
            if tok.is_punct(*_OPENERS):
                depth += 1
            elif tok.is_punct(*_CLOSERS):
                depth -= 1
            prev = tok
            j += 1
        return j

    def _declarators(self, keyword_idx: int) -> List[Token]:
        """Names bound by ``var``/``let``/``const`` at *keyword_idx*."""
        tokens = self.tokens
        names: List[Token] = []
        j = keyword_idx + 1
        while j < len(tokens):
            tok = tokens[j]
            if tok.kind is TokenKind.IDENT and not is_keyword(tok.text):
                names.append(tok)
                j += 1
            elif tok.is_punct("{", "["):
                close = matching_close(tokens, j)
                if close is None:
                    break
                names.extend(self._pattern_names(j, close))
                j = close + 1
            else:
                break
            if j < len(tokens) and tokens[j].is_punct("="):
                j = self._skip_initializer(j + 1)
            if j < len(tokens) and tokens[j].is_punct(","):
                j += 1
                continue
            break
        return names

    # -- token handlers -----------------------------------------------------

    def _close_expression_scopes(self, tok: Token) -> None:
        while len(self.stack) > 1:
            top = self.top
            if top.mode == "expr":
                ends = (
                    (tok.is_punct(",", ";", ")", "]") and self.nest == top.nest)
                    or tok.is_punct("}")
                )
                if not ends:
                    return
                self._close(tok.start)
            elif top.mode == "statement" and tok.is_punct("}"):
                self._close(tok.start)
            else:
                return

    def _resolve_awaiting(self, tok: Token) -> bool:
        """Settle a header whose body has not started; True if *tok* is consumed."""
        top = self.top
        if tok.is_punct("=>"):
            top.arrow = True
            return True
        if tok.is_punct("{"):
            top.mode = "brace"
            return True
        kind = self.scopes[top.scope_id].kind
        if top.arrow or kind == "for":
            top.mode = "expr" if top.arrow else "statement"
            top.nest = self.nest
        else:
            self._close(tok.start)
        return False

    def _open_header(self, idx: int, pending: Optional[_Pending]) -> None:
        tok = self.tokens[idx]
        kind = pending.kind if pending else "arrow"
        is_function = kind in ("function", "method", "arrow")
        scope = self._open(tok.start, "header", "function" if is_function else kind, is_function)

        if is_function or kind == "catch":
            bindings, specs = self._parameters(idx)
            for binding in bindings:
                self._declare(binding, scope)
            if pending is not None and pending.name is not None:
                if pending.is_declaration:
                    name = pending.name.text
                    self.functions[name] = FunctionSignature(name, tuple(specs))
                elif kind == "function":
                    scope.block_vars.add(pending.name.text)
        elif kind == "for":
            tokens = self.tokens
            if (
                idx + 2 < len(tokens)
                and tokens[idx + 1].kind is TokenKind.IDENT
                and not is_keyword(tokens[idx + 1].text)
                and tokens[idx + 2].is_ident("in", "of")
            ):
                self._declare(tokens[idx + 1], scope)

        self.nest += 1

    def _handle_function_keyword(self, idx: int) -> None:
        tokens = self.tokens
        j = idx + 1
        if j < len(tokens) and tokens[j].is_punct("*"):
            j += 1
        name = None
        if j < len(tokens) and tokens[j].kind is TokenKind.IDENT:
            name = tokens[j]
            j += 1
        if j >= len(tokens) or not tokens[j].is_punct("("):
            return

        prev = tokens[idx - 1] if idx > 0 else None
        is_declaration = name is not None and (
            prev is None
            or prev.is_punct(";", "{", "}")
            or prev.is_ident("export", "default", "async")
            or (tokens[idx].newline_before and not _continues(prev, tokens[idx]))
        )
        if is_declaration:
            self._declare(name, self.scopes[self.top.scope_id], "function_names")
        elif name is not None:
            self.sites.add(name.start)
        self.pending[j] = _Pending("function", name, is_declaration)

    def _handle_identifier(self, idx: int) -> None:
        tokens = self.tokens
        tok = tokens[idx]
        text = tok.text

        if text in ("var", "let", "const"):
            target = self._function_scope() if text == "var" else self.scopes[self.top.scope_id]
            bucket = "function_vars" if text == "var" else "block_vars"
            for name in self._declarators(idx):
                self._declare(name, target, bucket)
            return
        if text == "function":
            self._handle_function_keyword(idx)
            return
        if text == "class":
            if idx + 1 < len(tokens) and tokens[idx + 1].kind is TokenKind.IDENT:
                self._declare(tokens[idx + 1], self.scopes[self.top.scope_id])
            return
        if text in ("for", "catch"):
            if idx + 1 < len(tokens) and tokens[idx + 1].is_punct("("):
                self.pending[idx + 1] = _Pending(text)
            return
        if is_keyword(text):
            return

        # Method shorthand: ``name(...) {`` inside an object literal or class.
        prev = tokens[idx - 1] if idx > 0 else None
        if prev is not None and (prev.is_punct(".", "?.") or prev.is_ident("function")):
            return
        if idx + 1 < len(tokens) and tokens[idx + 1].is_punct("("):
            close = matching_close(tokens, idx + 1)
            if close is not None and close + 1 < len(tokens) and tokens[close + 1].is_punct("{"):
                self.method_sites.add(tok.start)
                self.pending[idx + 1] = _Pending("method", tok)

    def build(self) -> ScopeTree:
        tokens = self.tokens
        for idx, tok in enumerate(tokens):
            self._close_expression_scopes(tok)

            if self.top.mode == "awaiting" and self._resolve_awaiting(tok):
                continue

            arrow = self.arrow_starts.get(idx)
            if arrow == "ident":
                scope = self._open(tok.start, "awaiting", "function", is_function=True)
                self._declare(tok, scope)
                continue
            if tok.is_punct("(") and (idx in self.pending or arrow == "paren"):
                self._open_header(idx, self.pending.pop(idx, None))
                continue

            if tok.kind is TokenKind.IDENT:
                self._handle_identifier(idx)
            elif tok.kind is TokenKind.PUNCT:
                self._handle_punct(tok)

        length = self.scopes[0].end
        while len(self.stack) > 1:
            self._close(length)

        return ScopeTree(
            self.scopes,
            frozenset(self.sites),
            frozenset(self.method_sites),
            self.functions,
        )

    def _handle_punct(self, tok: Token) -> None:
        text = tok.text
        if text in ("(", "["):
            self.nest += 1
        elif text in (")", "]"):
            self.nest = max(0, self.nest - 1)
            top = self.top
            if top.mode == "header" and self.nest == top.nest:
                top.mode = "awaiting"
        elif text == "{":
            self._open(tok.start, "brace", "block")
        elif text == "}":
            while len(self.stack) > 1 and self.top.mode != "brace":
                self._close(tok.start)
            if len(self.stack) > 1:
                self._close(tok.end)
        elif text == ";":
            top = self.top
            if top.mode == "statement" and self.nest == top.nest:
                self._close(tok.end)


def build_scope_tree(tokens: List[Token], length: int) -> ScopeTree:
    """Build the scope tree for a token stream.

    Args:
        tokens: Tokens from :func:`dosage_lint.tokenizer.tokenize`.
        length: Length of the source text; the root scope spans
            ``[0, length)``.

    Returns:
        A :class:`ScopeTree` whose root scope has id 0.
    """
    tree = _Builder(tokens, length).build()
    logger.debug("Built %d scopes, %d declarations", len(tree), len(tree.declaration_sites))
    return tree
