"""
Dosage Lint
===========
Real-time static analysis for dosage-calculator scripts: syntax errors,
unknown identifiers and wrong argument counts reported while the user
types, backed by an external compiler check.
"""

from dosage_lint.config import LintConfig, get_config, reload_config
from dosage_lint.diagnostics import Diagnostic, DosageLintError, Severity, summarize
from dosage_lint.language import (
    CalculatorParameter,
    FunctionRegistry,
    FunctionSignature,
    ParameterDefinitionError,
    ParameterType,
    load_parameters,
)
from dosage_lint.sanitizer import sanitize, find_unterminated_strings
from dosage_lint.tokenizer import Token, TokenKind, tokenize
from dosage_lint.brackets import check_brackets
from dosage_lint.scopes import Scope, ScopeTree, build_scope_tree
from dosage_lint.calls import (
    Argument,
    ArgumentKind,
    CallSiteValidator,
    FunctionCallSite,
    classify_argument,
    find_call_sites,
    split_arguments,
)
from dosage_lint.resolver import IdentifierResolver
from dosage_lint.style import StyleChecker
from dosage_lint.compiler import (
    NodeScriptCompiler,
    ScriptCompileError,
    ScriptCompiler,
    ValidationScript,
    build_validation_script,
)
from dosage_lint.pipeline import (
    AnalysisSnapshot,
    DiagnosticEngine,
    DiagnosticsObserver,
    ValidationPipeline,
    ValidationState,
)
from dosage_lint.observability import StructuredLogger, MetricsCollector, get_logger, get_metrics


__all__ = [
    # Core
    "DiagnosticEngine",
    "ValidationPipeline",
    "ValidationState",
    "AnalysisSnapshot",
    "DiagnosticsObserver",
    "LintConfig",
    "get_config",
    "reload_config",
    # Diagnostics
    "Diagnostic",
    "Severity",
    "DosageLintError",
    "summarize",
    # Language
    "CalculatorParameter",
    "ParameterType",
    "ParameterDefinitionError",
    "FunctionRegistry",
    "FunctionSignature",
    "load_parameters",
    # Analyzers
    "sanitize",
    "find_unterminated_strings",
    "Token",
    "TokenKind",
    "tokenize",
    "check_brackets",
    "Scope",
    "ScopeTree",
    "build_scope_tree",
    "Argument",
    "ArgumentKind",
    "FunctionCallSite",
    "CallSiteValidator",
    "classify_argument",
    "find_call_sites",
    "split_arguments",
    "IdentifierResolver",
    "StyleChecker",
    # Compiler
    "ScriptCompiler",
    "ScriptCompileError",
    "NodeScriptCompiler",
    "ValidationScript",
    "build_validation_script",
    # Observability
    "StructuredLogger",
    "MetricsCollector",
    "get_logger",
    "get_metrics",
]
