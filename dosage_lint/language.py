"""
Language Definition
===================
Static registries for the dosage-script dialect of JavaScript: keyword
groups, built-in globals, array methods, the custom helper functions
the calculator host injects, and the per-document calculator parameters.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from dosage_lint.diagnostics import DosageLintError

IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

CONTROL_FLOW_KEYWORDS = frozenset({"if", "else", "switch", "case", "default"})
LOOP_KEYWORDS = frozenset({"for", "while", "do", "break", "continue"})
DECLARATION_KEYWORDS = frozenset({"var", "let", "const", "function", "class"})
EXCEPTION_KEYWORDS = frozenset({"try", "catch", "finally", "throw"})
VALUE_KEYWORDS = frozenset({"null", "undefined", "true", "false", "NaN", "Infinity"})
OPERATOR_KEYWORDS = frozenset({"new", "delete", "typeof", "instanceof", "in", "of", "void"})
OTHER_KEYWORDS = frozenset({
    "return", "this", "super", "extends", "static", "async", "await",
    "yield", "debugger", "with", "import", "export", "arguments",
})

KEYWORDS = (
    CONTROL_FLOW_KEYWORDS | LOOP_KEYWORDS | DECLARATION_KEYWORDS
    | EXCEPTION_KEYWORDS | VALUE_KEYWORDS | OPERATOR_KEYWORDS | OTHER_KEYWORDS
)

# Keywords that take a parenthesised header: ``if (...)``.
HEADER_KEYWORDS = frozenset({"if", "switch", "while", "for", "catch"})


# ---------------------------------------------------------------------------
# Built-ins
# ---------------------------------------------------------------------------

GLOBAL_FUNCTIONS = frozenset({
    "parseInt", "parseFloat", "Number", "isNaN", "isFinite",
    "String", "encodeURI", "encodeURIComponent", "decodeURI",
    "decodeURIComponent", "escape", "unescape",
    "eval", "Boolean", "Array", "Object", "Function", "Symbol",
    "setTimeout", "clearTimeout", "setInterval", "clearInterval",
    "Promise", "alert", "confirm", "prompt",
})

GLOBAL_OBJECTS = frozenset({
    "Object", "Array", "String", "Number", "Boolean", "Date", "RegExp",
    "Error", "Math", "JSON", "console",
})

CALLABLE_OBJECTS = frozenset({
    "Array", "Object", "String", "Number", "Boolean", "Date", "RegExp",
    "Error", "Function", "Promise",
})

GLOBAL_VARIABLES = frozenset({"results"})

ARRAY_METHODS = frozenset({
    "includes", "indexOf", "lastIndexOf", "push", "pop", "shift", "unshift",
    "slice", "splice", "join", "reverse", "sort", "filter", "map", "forEach",
    "reduce", "reduceRight", "find", "findIndex", "some", "every", "concat",
    "flat", "flatMap",
})


def is_keyword(word: str) -> bool:
    return word in KEYWORDS


def is_valid_identifier(text: Optional[str]) -> bool:
    return bool(text) and IDENTIFIER_RE.match(text) is not None


def is_array_method(name: str) -> bool:
    return name in ARRAY_METHODS


def is_builtin_function(name: str) -> bool:
    """True for global functions and the global objects that are callable."""
    return name in GLOBAL_FUNCTIONS or name in CALLABLE_OBJECTS


# ---------------------------------------------------------------------------
# Function signatures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterSpec:
    """One declared parameter of a helper function."""
    name: str
    optional: bool = False


@dataclass(frozen=True)
class FunctionSignature:
    """Name and parameter list used for arity checks.

    Attributes:
        name: Function name.
        parameters: Declared parameters in order.
        description: Short description for tooltips.
    """

    name: str
    parameters: tuple[ParameterSpec, ...] = ()
    description: str = ""

    @property
    def required_count(self) -> int:
        return sum(1 for p in self.parameters if not p.optional)

    @property
    def total_count(self) -> int:
        return len(self.parameters)

    @classmethod
    def of(cls, name: str, *params: str, description: str = "") -> "FunctionSignature":
        """Build a signature from parameter names; a trailing ``?`` marks optional."""
        specs = tuple(
            ParameterSpec(p.rstrip("?"), optional=p.endswith("?")) for p in params
        )
        return cls(name=name, parameters=specs, description=description)


CUSTOM_FUNCTIONS: tuple[FunctionSignature, ...] = (
    FunctionSignature.of(
        "addResult", "description", "dose", "unit", "frequency",
        "duration", "notes", "isWarning", "warningMessage",
        description="Add a calculation result",
    ),
    FunctionSignature.of(
        "addWarning", "description", "dose", "unit", "frequency", "warningMessage",
        description="Add a warning result",
    ),
    FunctionSignature.of(
        "addNormalResult", "description", "dose", "unit", "frequency", "duration", "notes",
        description="Add a normal result",
    ),
    FunctionSignature.of("round", "value", "decimals", description="Round to decimal places"),
    FunctionSignature.of("clamp", "value", "min", "max", description="Clamp into a range"),
    FunctionSignature.of("isValidNumber", "value", description="Check for a finite number"),
    FunctionSignature.of("safeParseFloat", "value", "defaultValue", description="Parse a float with fallback"),
    FunctionSignature.of("safeParseInt", "value", "defaultValue", description="Parse an int with fallback"),
)


class FunctionRegistry:
    """Read-only lookup of custom helper signatures.

    Usage::

        registry = FunctionRegistry()
        registry.get("round").required_count  # 2
        extended = registry.with_functions([FunctionSignature.of("bsa", "h", "w")])
    """

    def __init__(self, functions: Optional[Iterable[FunctionSignature]] = None):
        items = CUSTOM_FUNCTIONS if functions is None else tuple(functions)
        self._functions: Dict[str, FunctionSignature] = {f.name: f for f in items}

    def get(self, name: str) -> Optional[FunctionSignature]:
        return self._functions.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __iter__(self):
        return iter(self._functions.values())

    def __len__(self) -> int:
        return len(self._functions)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._functions)

    def with_functions(self, extra: Iterable[FunctionSignature]) -> "FunctionRegistry":
        """Return a new registry with *extra* added (overriding same names)."""
        merged = dict(self._functions)
        for sig in extra:
            merged[sig.name] = sig
        return FunctionRegistry(merged.values())

    def global_names(self) -> frozenset[str]:
        """Every name that is always resolvable: helpers and built-in globals."""
        return self.names | GLOBAL_FUNCTIONS | GLOBAL_OBJECTS | GLOBAL_VARIABLES

    def is_known_function(self, name: str) -> bool:
        return name in self._functions or is_builtin_function(name)


# ---------------------------------------------------------------------------
# Calculator parameters
# ---------------------------------------------------------------------------

class ParameterDefinitionError(DosageLintError):
    """Raised when calculator parameter definitions cannot be parsed."""


class ParameterType(Enum):
    NUMBER = "number"
    BOOLEAN = "boolean"
    TEXT = "text"
    SELECT = "select"
    ARRAY = "array"


class CalculatorParameter(BaseModel):
    """One input parameter declared by a dosage calculator.

    Accepts both snake_case and the camel/Pascal case keys stored by the
    calculator editor (``dataType``, ``DefaultValue``...).
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(validation_alias=AliasChoices("name", "Name"))
    data_type: ParameterType = Field(
        default=ParameterType.NUMBER,
        validation_alias=AliasChoices("data_type", "dataType", "DataType"),
    )
    default_value: Any = Field(
        default=None,
        validation_alias=AliasChoices("default_value", "defaultValue", "DefaultValue"),
    )
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("display_name", "displayName", "DisplayName"),
    )
    unit: str = Field(default="", validation_alias=AliasChoices("unit", "Unit"))
    options: List[str] = Field(default_factory=list, validation_alias=AliasChoices("options", "Options"))

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return (v or "").strip()

    @field_validator("data_type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, ParameterType):
            return v
        text = str(v or "").strip().lower()
        try:
            return ParameterType(text)
        except ValueError:
            # Unknown editor types are rendered like text.
            return ParameterType.TEXT

    @property
    def is_declarable(self) -> bool:
        return is_valid_identifier(self.name)

    def identity(self) -> tuple:
        """Hashable value used to detect unchanged parameter sets."""
        return (self.name, self.data_type.value, repr(self.default_value))


_PARAMETER_LIST = TypeAdapter(List[CalculatorParameter])


def load_parameters(data: Union[str, bytes, Sequence[Any], None]) -> List[CalculatorParameter]:
    """Parse parameter definitions from JSON text or already-decoded data.

    Raises:
        ParameterDefinitionError: If the data is not a list of parameter
            objects.
    """
    if data is None or data == "" or data == b"":
        return []
    try:
        raw = json.loads(data) if isinstance(data, (str, bytes)) else list(data)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParameterDefinitionError(f"Invalid parameter JSON: {e}") from e
    try:
        return _PARAMETER_LIST.validate_python(raw)
    except ValidationError as e:
        raise ParameterDefinitionError(str(e)) from e


def parameter_names(parameters: Iterable[CalculatorParameter]) -> frozenset[str]:
    return frozenset(p.name for p in parameters if p.name)
