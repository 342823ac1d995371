"""Tests for the scope tree builder."""

import pytest

from conftest import offset_of, scope_tree_for


def visible_at(source, needle, occurrence=1):
    tree = scope_tree_for(source)
    return tree.variables_in_scope(offset_of(source, needle, occurrence))


# ---------------------------------------------------------------------------
# Tree structure
# ---------------------------------------------------------------------------

class TestTreeStructure:
    SOURCE = (
        "var total = 0;\n"
        "function add(a, b) {\n"
        "  if (a > b) { let t = a; }\n"
        "  return a + b;\n"
        "}\n"
    )

    def test_single_root_spans_source(self):
        tree = scope_tree_for(self.SOURCE)
        root = tree.root
        assert root.id == 0
        assert root.parent is None
        assert root.level == 0
        assert (root.start, root.end) == (0, len(self.SOURCE))
        assert [s for s in tree.scopes if s.parent is None] == [root]

    def test_children_contained_in_parent(self):
        tree = scope_tree_for(self.SOURCE)
        for scope in tree.scopes[1:]:
            parent = tree.scopes[scope.parent]
            assert parent.start <= scope.start
            assert scope.end <= parent.end
            assert scope.level == parent.level + 1

    def test_function_scope_starts_at_header(self):
        tree = scope_tree_for(self.SOURCE)
        function_scope = tree.children(0)[0]
        assert function_scope.is_function_scope
        assert function_scope.start == self.SOURCE.index("(a, b)")
        assert function_scope.end == self.SOURCE.rindex("}") + 1

    def test_scope_at_returns_innermost(self):
        tree = scope_tree_for(self.SOURCE)
        inner = tree.scope_at(offset_of(self.SOURCE, "let t"))
        assert inner.level == 2
        assert "t" in inner.block_vars

    def test_all_identifiers(self):
        tree = scope_tree_for(self.SOURCE)
        assert tree.all_identifiers() == {"total", "add", "a", "b", "t"}

    def test_empty_source(self):
        tree = scope_tree_for("")
        assert len(tree) == 1
        assert tree.variables_in_scope(0) == frozenset()


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

class TestVisibility:
    def test_function_parameters_and_name_visible_in_body(self):
        source = "function f(a,b){ return a+b; }\nf(1);"
        names = visible_at(source, "a+b")
        assert {"a", "b", "f"} <= names

    def test_parameters_not_visible_outside(self):
        source = "function f(a,b){ return a+b; }\nf(1);"
        names = visible_at(source, "f(1)")
        assert "f" in names
        assert "a" not in names

    def test_let_is_block_scoped(self):
        source = "{ let y = 1; } console.log(y);"
        assert "y" in visible_at(source, "y = 1")
        assert "y" not in visible_at(source, "y);")

    def test_var_hoists_to_function(self):
        source = "function f(){ if (true) { var x = 1; } return x; }"
        assert "x" in visible_at(source, "x; }")

    def test_var_does_not_leak_out_of_function(self):
        source = "function f(){ var x = 1; }\nvar y = x;"
        assert "x" not in visible_at(source, "x;")

    def test_top_level_var_visible_everywhere(self):
        source = "if (ok) { var flag = true; }\nfunction g() { return flag; }"
        assert "flag" in visible_at(source, "flag; }")

    def test_for_let_visible_in_header_and_body_only(self):
        source = "for (let i = 0; i < 3; i++) { total += i; }\nvar after = i;"
        assert "i" in visible_at(source, "i < 3")
        assert "i" in visible_at(source, "i; }")
        assert "i" not in visible_at(source, "after = i")

    def test_for_in_without_keyword_binds_variable(self):
        source = "for (key in doses) { show(key); }"
        assert "key" in visible_at(source, "key);")

    def test_catch_binding(self):
        source = "try { risky(); } catch (e) { log(e); }\ne;"
        assert "e" in visible_at(source, "e);")
        assert "e" not in visible_at(source, "e;")

    def test_const_in_nested_block(self):
        source = "function f() { { const k = 2; } return k; }"
        assert "k" not in visible_at(source, "k; }")

    def test_class_name_bound(self):
        source = "class Dose { }\nnew Dose();"
        assert "Dose" in visible_at(source, "Dose();")


class TestFunctionForms:
    def test_expression_bodied_arrow(self):
        source = "var g = x => x * 2; var z = x;"
        assert "x" in visible_at(source, "x * 2")
        assert "x" not in visible_at(source, "x;")

    def test_arrow_in_call_argument(self):
        source = "values.map(v => v * 2).filter(w => w > v);"
        assert "v" in visible_at(source, "v * 2")
        assert "v" not in visible_at(source, "v);")

    def test_arrow_with_block_body(self):
        source = "var h = (p, q) => { return p + q; };\np;"
        assert {"p", "q"} <= visible_at(source, "p + q")
        assert "p" not in visible_at(source, "p;")

    def test_named_function_expression_sees_own_name(self):
        source = "var h = function inner(n) { return inner(n - 1); };\ninner;"
        assert "inner" in visible_at(source, "inner(n -")
        assert "inner" not in visible_at(source, "inner;")

    def test_method_shorthand(self):
        source = "var o = { calc(dose) { return dose; } };"
        tree = scope_tree_for(source)
        assert offset_of(source, "calc") in tree.method_sites
        assert "dose" in tree.variables_in_scope(offset_of(source, "dose;"))
        assert "calc" not in tree.all_identifiers()


class TestDeclarations:
    def test_var_list_with_initializers(self):
        tree = scope_tree_for("var a = f(1, 2), b = [3, 4], c;")
        assert tree.root.function_vars == {"a", "b", "c"}

    def test_declarations_without_semicolons(self):
        tree = scope_tree_for("let a = 1\nlet b = a + 2\nb")
        assert tree.root.block_vars == {"a", "b"}

    def test_function_declaration_after_unterminated_statement(self):
        tree = scope_tree_for("var x = 1\nfunction calc(a) { return a; }\nvar y = calc();")
        assert "calc" in tree.root.function_names
        assert tree.functions["calc"].required_count == 1

    def test_function_expression_continuing_previous_line(self):
        tree = scope_tree_for("var f =\nfunction named(a) { return a; }")
        assert "named" not in tree.root.function_names
        assert "named" not in tree.functions

    def test_multiline_initializer(self):
        tree = scope_tree_for("var dose = weight *\n  factor,\n  max = 10;")
        assert tree.root.function_vars == {"dose", "max"}

    def test_object_destructuring(self):
        tree = scope_tree_for("const {a, b: c} = obj;")
        assert tree.root.block_vars == {"a", "c"}

    def test_array_destructuring(self):
        tree = scope_tree_for("let [first, second] = pair;")
        assert tree.root.block_vars == {"first", "second"}

    def test_declaration_sites_recorded(self):
        source = "var dose = 1; function f(w) {}"
        tree = scope_tree_for(source)
        assert offset_of(source, "dose") in tree.declaration_sites
        assert offset_of(source, "f(") in tree.declaration_sites
        assert offset_of(source, "w)") in tree.declaration_sites

    def test_function_signature(self):
        tree = scope_tree_for("function f(a, b = 1, ...rest) {}")
        sig = tree.functions["f"]
        assert sig.required_count == 1
        assert sig.total_count == 3

    def test_function_expression_has_no_signature(self):
        tree = scope_tree_for("var g = function named(a) {};")
        assert "named" not in tree.functions

    @pytest.mark.parametrize("source", [
        "function f( {",
        "if (x > 1 { }",
        "}}}",
        "var = ;",
        "x => ",
    ])
    def test_malformed_input_still_builds(self, source):
        tree = scope_tree_for(source)
        assert tree.root.end == len(source)
        for scope in tree.scopes[1:]:
            assert scope.end <= len(source)
