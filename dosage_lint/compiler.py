"""
Script Compiler
===============
Authoritative syntax check of a dosage script by an external JavaScript
engine.

The user's text is compiled behind a generated prelude that declares the
helper functions, the ``results`` array and one ``var`` per calculator
parameter, so the engine sees the same globals the calculator host
provides.  Compiler line numbers are mapped back to user coordinates by
subtracting the prelude's line count, which is computed from the prelude
itself.

:class:`NodeScriptCompiler` runs ``node --check`` on a temporary file.  If
Node.js is not found, :pyattr:`NodeScriptCompiler.available` is ``False``
and the check is skipped.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol, runtime_checkable

from dosage_lint.diagnostics import Diagnostic, DosageLintError, Severity
from dosage_lint.language import (
    CalculatorParameter,
    FunctionRegistry,
    FunctionSignature,
    ParameterType,
)

logger = logging.getLogger("dosage_lint.compiler")

# Location phrases accepted in engine messages:
#   "... at line 12 ..."  /  "... line 12 ..."
_LINE_RE = re.compile(r"(?:\bat\s+)?\bline\s+(\d+)", re.IGNORECASE)
_COLUMN_RE = re.compile(r"(?:\bat\s+)?\bcolumn\s+(\d+)", re.IGNORECASE)
_BOILERPLATE_RE = re.compile(r"Script compilation failed\.?", re.IGNORECASE)

# node --check output:
#   /tmp/dosage_lint_x/script.js:12
#       var x = ;
#               ^
#
#   SyntaxError: Unexpected token ';'
_NODE_ERROR_RE = re.compile(r"^(\w*Error): (.+)$", re.MULTILINE)
_CARET_RE = re.compile(r"^(\s*)\^+\s*$")


class ScriptCompileError(DosageLintError):
    """Raised by a :class:`ScriptCompiler` when the script does not compile.

    Attributes:
        line: Reported line in the full script, if the engine gave one.
        column: Reported column, if the engine gave one.
    """

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.line = line
        self.column = column


@runtime_checkable
class ScriptCompiler(Protocol):
    """Anything that can syntax-check a complete script."""

    available: bool

    def compile(self, script: str) -> None:
        """Compile *script*; raise :class:`ScriptCompileError` on failure."""
        ...


# ---------------------------------------------------------------------------
# Prelude
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationScript:
    """A generated prelude followed by the user's text."""

    prelude: str
    user_text: str

    @property
    def text(self) -> str:
        return self.prelude + self.user_text

    @property
    def prelude_line_count(self) -> int:
        return self.prelude.count("\n")

    def to_user_line(self, line: int) -> int:
        """Map a 1-based line of :attr:`text` to a line of the user's text."""
        return line - self.prelude_line_count


def parameter_default(parameter: CalculatorParameter) -> str:
    """JavaScript literal used to declare *parameter* in the prelude."""
    value = parameter.default_value
    kind = parameter.data_type

    if kind is ParameterType.NUMBER:
        if isinstance(value, bool) or value is None or value == "":
            return "0"
        if isinstance(value, (int, float)):
            return repr(value)
        try:
            float(str(value))
        except ValueError:
            return "0"
        return str(value).strip()

    if kind is ParameterType.BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        return "true" if str(value).strip().lower() == "true" else "false"

    if kind is ParameterType.ARRAY:
        if isinstance(value, (list, tuple)):
            return json.dumps(list(value), ensure_ascii=False)
        text = str(value or "").strip()
        return text if text.startswith("[") and text.endswith("]") else "[]"

    return json.dumps("" if value is None else str(value), ensure_ascii=False)


def helper_stub(signature: FunctionSignature) -> str:
    params = ", ".join(p.name for p in signature.parameters)
    return f"function {signature.name}({params}) {{}}"


def build_validation_script(
    user_text: str,
    parameters: Iterable[CalculatorParameter] = (),
    registry: Optional[FunctionRegistry] = None,
) -> ValidationScript:
    """Generate the prelude for *user_text*.

    Args:
        user_text: Script text as typed by the user.
        parameters: Calculator parameters to declare; names that are not
            valid identifiers are skipped.
        registry: Helper functions to stub out.

    Returns:
        :class:`ValidationScript` whose first user line follows the prelude.
    """
    registry = registry or FunctionRegistry()
    lines = ["var results = [];"]
    for parameter in parameters:
        if parameter.is_declarable:
            lines.append(f"var {parameter.name} = {parameter_default(parameter)};")
    for signature in registry:
        lines.append(helper_stub(signature))
    prelude = "\n".join(lines) + "\n"
    return ValidationScript(prelude=prelude, user_text=user_text)


def clean_compile_message(message: str) -> str:
    """Strip location phrases and engine boilerplate from *message*."""
    text = _BOILERPLATE_RE.sub("", message)
    text = _LINE_RE.sub("", text)
    text = _COLUMN_RE.sub("", text)
    text = re.sub(r"\(\s*,?\s*\)", "", text)
    text = re.sub(r"\s{2,}", " ", text).strip(" ,.:")
    return text or "Syntax error"


def parse_compile_error(error: ScriptCompileError, script: ValidationScript) -> Optional[Diagnostic]:
    """Turn a compile failure into a diagnostic in user coordinates.

    Returns ``None`` when no line can be found or the line falls inside
    the prelude.
    """
    message = str(error)
    line = error.line
    if line is None:
        match = _LINE_RE.search(message)
        if not match:
            return None
        line = int(match.group(1))

    column = error.column
    if column is None:
        match = _COLUMN_RE.search(message)
        column = int(match.group(1)) if match else 1

    user_line = script.to_user_line(line)
    if user_line <= 0:
        return None
    return Diagnostic(
        user_line, max(column, 1), clean_compile_message(message),
        Severity.ERROR, "compile-error",
    )


# ---------------------------------------------------------------------------
# Node.js backend
# ---------------------------------------------------------------------------

class NodeScriptCompiler:
    """Syntax-checks scripts with ``node --check``.

    Args:
        node_path: Explicit path or command name for Node.js.  If ``None``,
            ``node`` is looked up on ``PATH``.
        timeout_seconds: Maximum seconds for the subprocess.
    """

    def __init__(self, node_path: Optional[str] = None, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._node = self._find_node(node_path)
        self.available = self._node is not None

        if self.available:
            logger.info("Node.js available: %s", self._node)
        else:
            logger.warning("Node.js not found, compile checks will be skipped")

    @staticmethod
    def _find_node(node_path: Optional[str]) -> Optional[str]:
        if node_path:
            if os.path.isfile(node_path):
                return node_path
            return shutil.which(node_path)
        return shutil.which("node") or shutil.which("nodejs")

    def compile(self, script: str) -> None:
        """Check *script* for syntax errors.

        Each call writes to its own temporary directory, so one compiler can
        serve concurrent requests.

        Raises:
            ScriptCompileError: If Node.js rejects the script.
        """
        if not self.available:
            logger.debug("Skipping compile check, Node.js not available")
            return

        with tempfile.TemporaryDirectory(prefix="dosage_lint_") as tmp:
            path = Path(tmp) / "script.js"
            path.write_text(script, encoding="utf-8")
            try:
                proc = subprocess.run(
                    [self._node, "--check", str(path)],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                )
            except subprocess.TimeoutExpired:
                logger.warning("Compile check timed out after %ss", self.timeout_seconds)
                return

        if proc.returncode == 0:
            return
        raise self._parse_output(proc.stderr or proc.stdout, path)

    @staticmethod
    def _parse_output(output: str, path: Path) -> ScriptCompileError:
        """Build a :class:`ScriptCompileError` from ``node --check`` output."""
        lines = output.splitlines()
        line_no: Optional[int] = None
        column: Optional[int] = None

        location_re = re.compile(re.escape(path.name) + r":(\d+)\s*$")
        for i, text in enumerate(lines):
            match = location_re.search(text)
            if not match:
                continue
            line_no = int(match.group(1))
            # The offending source line follows, then a caret marker.
            if i + 2 < len(lines):
                caret = _CARET_RE.match(lines[i + 2])
                if caret:
                    column = len(caret.group(1)) + 1
            break

        error = _NODE_ERROR_RE.search(output)
        message = f"{error.group(1)}: {error.group(2).strip()}" if error else "SyntaxError"
        if line_no is not None:
            message += f" (line {line_no}, column {column or 1})"
        return ScriptCompileError(message, line=line_no, column=column)
