"""Tests for the language registries and calculator parameters."""

import pytest

from dosage_lint.language import (
    CUSTOM_FUNCTIONS,
    CalculatorParameter,
    FunctionRegistry,
    FunctionSignature,
    ParameterDefinitionError,
    ParameterType,
    is_array_method,
    is_builtin_function,
    is_keyword,
    is_valid_identifier,
    load_parameters,
    parameter_names,
)


class TestKeywordsAndBuiltins:
    @pytest.mark.parametrize("word", ["var", "let", "function", "typeof", "null", "this", "catch"])
    def test_keywords(self, word):
        assert is_keyword(word)

    @pytest.mark.parametrize("word", ["dose", "Math", "results", "round"])
    def test_not_keywords(self, word):
        assert not is_keyword(word)

    @pytest.mark.parametrize("text, valid", [
        ("dose", True),
        ("_tmp", True),
        ("$el", True),
        ("a1", True),
        ("1a", False),
        ("body weight", False),
        ("", False),
        (None, False),
    ])
    def test_valid_identifier(self, text, valid):
        assert is_valid_identifier(text) is valid

    def test_builtin_functions(self):
        assert is_builtin_function("parseFloat")
        assert is_builtin_function("Date")
        assert not is_builtin_function("Math")
        assert not is_builtin_function("round")

    def test_array_methods(self):
        assert is_array_method("filter")
        assert is_array_method("includes")
        assert not is_array_method("toUpperCase")


class TestFunctionSignature:
    def test_of_marks_optional(self):
        sig = FunctionSignature.of("f", "a", "b?")
        assert sig.required_count == 1
        assert sig.total_count == 2
        assert [p.name for p in sig.parameters] == ["a", "b"]

    def test_custom_function_arities(self):
        registry = FunctionRegistry()
        assert registry.get("addResult").required_count == 8
        assert registry.get("addWarning").required_count == 5
        assert registry.get("addNormalResult").required_count == 6
        assert registry.get("round").required_count == 2
        assert registry.get("clamp").required_count == 3
        assert registry.get("isValidNumber").required_count == 1


class TestFunctionRegistry:
    def test_defaults(self):
        registry = FunctionRegistry()
        assert len(registry) == len(CUSTOM_FUNCTIONS)
        assert "round" in registry
        assert registry.get("missing") is None

    def test_with_functions_is_a_copy(self):
        registry = FunctionRegistry()
        extended = registry.with_functions([FunctionSignature.of("bsa", "h", "w")])
        assert "bsa" in extended
        assert "bsa" not in registry

    def test_with_functions_overrides(self):
        extended = FunctionRegistry().with_functions([FunctionSignature.of("round", "value")])
        assert extended.get("round").total_count == 1

    def test_global_names(self):
        names = FunctionRegistry().global_names()
        assert {"round", "Math", "parseInt", "results", "console"} <= names

    def test_is_known_function(self):
        registry = FunctionRegistry()
        assert registry.is_known_function("clamp")
        assert registry.is_known_function("Number")
        assert not registry.is_known_function("computeDose")


class TestCalculatorParameter:
    def test_editor_keys(self):
        param = CalculatorParameter.model_validate(
            {"Name": " weight ", "DataType": "Number", "DefaultValue": 70, "Unit": "kg"}
        )
        assert param.name == "weight"
        assert param.data_type is ParameterType.NUMBER
        assert param.default_value == 70
        assert param.unit == "kg"

    def test_camel_case_keys(self):
        param = CalculatorParameter.model_validate({"name": "route", "dataType": "select"})
        assert param.data_type is ParameterType.SELECT

    def test_unknown_type_is_text(self):
        param = CalculatorParameter(name="x", data_type="date")
        assert param.data_type is ParameterType.TEXT

    def test_declarable(self):
        assert CalculatorParameter(name="weight").is_declarable
        assert not CalculatorParameter(name="body weight").is_declarable

    def test_identity_tracks_default(self):
        a = CalculatorParameter(name="w", default_value=1)
        b = CalculatorParameter(name="w", default_value=2)
        assert a.identity() != b.identity()
        assert a.identity() == CalculatorParameter(name="w", default_value=1).identity()


class TestLoadParameters:
    def test_from_json_text(self):
        params = load_parameters('[{"name": "weight", "dataType": "number", "defaultValue": 70}]')
        assert [p.name for p in params] == ["weight"]

    def test_from_decoded_list(self):
        params = load_parameters([{"name": "age"}, {"Name": "isChild", "DataType": "boolean"}])
        assert parameter_names(params) == {"age", "isChild"}

    @pytest.mark.parametrize("empty", [None, "", b""])
    def test_empty_input(self, empty):
        assert load_parameters(empty) == []

    def test_invalid_json(self):
        with pytest.raises(ParameterDefinitionError):
            load_parameters("[{not json")

    def test_missing_name(self):
        with pytest.raises(ParameterDefinitionError):
            load_parameters([{"dataType": "number"}])

    def test_parameter_names_skips_blank(self):
        assert parameter_names([CalculatorParameter(name="  ")]) == frozenset()
