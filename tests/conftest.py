"""Shared test fixtures for the dosage_lint test suite.

Provides fake compilers, configs, parameter sets and an analysis helper.
Unit tests never need a real Node.js binary.
"""

from typing import List, Optional

import pytest

from dosage_lint.compiler import ScriptCompileError
from dosage_lint.config import CompilerConfig, LintConfig, PipelineConfig
from dosage_lint.diagnostics import Diagnostic
from dosage_lint.language import CalculatorParameter, FunctionRegistry, ParameterType
from dosage_lint.observability import MetricsCollector, StructuredLogger
from dosage_lint.pipeline import DiagnosticEngine
from dosage_lint.sanitizer import sanitize
from dosage_lint.scopes import ScopeTree, build_scope_tree
from dosage_lint.tokenizer import tokenize


# ---------------------------------------------------------------------------
# Fake compilers
# ---------------------------------------------------------------------------

class FakeCompiler:
    """A compiler that records scripts and optionally fails.

    Usage in tests::

        compiler = FakeCompiler(error=ScriptCompileError("Unexpected token at line 12"))
        engine = DiagnosticEngine(compiler=compiler, config=config)
    """

    def __init__(self, error: Optional[Exception] = None, available: bool = True):
        self.error = error
        self.available = available
        self.scripts: List[str] = []

    def compile(self, script: str) -> None:
        self.scripts.append(script)
        if self.error is not None:
            raise self.error


class PreludeAwareCompiler(FakeCompiler):
    """Fails on the script line containing *marker*, like a real engine would."""

    def __init__(self, marker: str):
        super().__init__()
        self.marker = marker

    def compile(self, script: str) -> None:
        self.scripts.append(script)
        for number, line in enumerate(script.split("\n"), start=1):
            if self.marker in line:
                raise ScriptCompileError(f"SyntaxError: Unexpected token at line {number} column 5")


class RecordingObserver:
    """Collects everything a ValidationPipeline publishes."""

    def __init__(self):
        self.statuses: List[str] = []
        self.snapshots = []

    def on_status(self, status):
        self.statuses.append(status)

    def on_validation_completed(self, snapshot):
        self.snapshots.append(snapshot)


# ---------------------------------------------------------------------------
# Config / engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    """LintConfig with a short debounce and no real compiler."""
    return LintConfig(
        pipeline=PipelineConfig(debounce_ms=50),
        compiler=CompilerConfig(enabled=False),
    )


@pytest.fixture
def quiet_logger():
    return StructuredLogger("dosage_lint.tests")


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def fake_compiler():
    return FakeCompiler()


@pytest.fixture
def engine(config, fake_compiler, quiet_logger, metrics):
    return DiagnosticEngine(
        compiler=fake_compiler, config=config, logger=quiet_logger, metrics=metrics,
    )


@pytest.fixture
def registry():
    return FunctionRegistry()


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------

@pytest.fixture
def parameters():
    """Parameters of a typical weight-based calculator."""
    return [
        CalculatorParameter(name="weight", data_type=ParameterType.NUMBER, default_value=70),
        CalculatorParameter(name="age", data_type=ParameterType.NUMBER, default_value=30),
        CalculatorParameter(name="isChild", data_type=ParameterType.BOOLEAN, default_value=False),
        CalculatorParameter(name="route", data_type=ParameterType.SELECT, default_value="oral"),
    ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def scope_tree_for(source: str) -> ScopeTree:
    sanitized = sanitize(source)
    return build_scope_tree(tokenize(sanitized), len(source))


def messages(diagnostics: List[Diagnostic]) -> List[str]:
    return [d.message for d in diagnostics]


def offset_of(source: str, needle: str, occurrence: int = 1) -> int:
    """Offset of the *occurrence*-th appearance of *needle* in *source*."""
    pos = -1
    for _ in range(occurrence):
        pos = source.index(needle, pos + 1)
    return pos
