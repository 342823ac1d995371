"""
Validation Pipeline
===================
:class:`DiagnosticEngine` runs one synchronous analysis pass and returns an
immutable :class:`AnalysisSnapshot`.  :class:`ValidationPipeline` wraps it
for live editing: edits reset a debounce timer, passes run one at a time on
a background worker, and results are pushed to subscribed observers.

Usage::

    class Printer:
        def on_status(self, status):
            print(status)

        def on_validation_completed(self, snapshot):
            for diag in snapshot.diagnostics:
                print(diag)

    with ValidationPipeline(parameters=params) as pipeline:
        pipeline.subscribe(Printer())
        pipeline.notify_edit("var dose = weight * 10;")
        pipeline.wait_until_idle()
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence, Tuple, TypeVar

from dosage_lint.brackets import check_brackets
from dosage_lint.calls import CallSiteValidator
from dosage_lint.compiler import (
    NodeScriptCompiler,
    ScriptCompileError,
    ScriptCompiler,
    build_validation_script,
    parse_compile_error,
)
from dosage_lint.config import LintConfig, get_config
from dosage_lint.diagnostics import Diagnostic, LineIndex, count_by_severity, dedupe, summarize
from dosage_lint.language import CalculatorParameter, FunctionRegistry, parameter_names
from dosage_lint.observability import MetricsCollector, StructuredLogger, get_logger, get_metrics
from dosage_lint.resolver import IdentifierResolver
from dosage_lint.sanitizer import find_unterminated_strings, sanitize
from dosage_lint.scopes import ScopeTree, build_scope_tree
from dosage_lint.style import StyleChecker
from dosage_lint.tokenizer import tokenize

logger = logging.getLogger("dosage_lint.pipeline")

VALIDATING_STATUS = "Validating..."
FAILURE_STATUS = "Unable to validate"

T = TypeVar("T")


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Result of one analysis pass.

    Attributes:
        text: The analyzed source text.
        parameters: Identity tuples of the parameters used.
        parameter_names: Names of those parameters.
        scope_tree: Scope tree, ``None`` for blank text or if it failed.
        diagnostics: Final diagnostics in user coordinates.
        status: Summary such as ``"2 errors, 1 warning"``.
        timings: Seconds spent per stage.
        stale: Whether the document changed while this pass ran.
    """

    text: str
    parameters: Tuple[tuple, ...] = ()
    parameter_names: FrozenSet[str] = frozenset()
    scope_tree: Optional[ScopeTree] = field(default=None, compare=False, repr=False)
    diagnostics: Tuple[Diagnostic, ...] = ()
    status: str = "No problems found"
    timings: Dict[str, float] = field(default_factory=dict, compare=False)
    stale: bool = False

    @property
    def counts(self) -> Dict[str, int]:
        return count_by_severity(self.diagnostics)

    @property
    def is_valid(self) -> bool:
        return self.counts["error"] == 0

    def with_stale(self, stale: bool = True) -> "AnalysisSnapshot":
        return dataclasses.replace(self, stale=stale)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "valid": self.is_valid,
            "stale": self.stale,
            "counts": self.counts,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def _parameter_key(parameters: Sequence[CalculatorParameter]) -> Tuple[tuple, ...]:
    return tuple(p.identity() for p in parameters)


class DiagnosticEngine:
    """Runs every analyzer over a document and merges their diagnostics.

    Args:
        registry: Custom helper signatures (defaults to the built-in set).
        compiler: External compiler; built from config when omitted and
            compiler checks are enabled.
        config: :class:`LintConfig`; the global config when omitted.
        logger: Structured event logger.
        metrics: Metrics collector.
    """

    def __init__(
        self,
        registry: Optional[FunctionRegistry] = None,
        compiler: Optional[ScriptCompiler] = None,
        config: Optional[LintConfig] = None,
        logger: Optional[StructuredLogger] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or get_config()
        self.registry = registry or FunctionRegistry()
        if compiler is None and self.config.compiler.enabled:
            compiler = NodeScriptCompiler(
                node_path=self.config.compiler.node_path,
                timeout_seconds=self.config.compiler.timeout_seconds,
            )
        self.compiler = compiler
        self.logger = logger or get_logger(self.config.observability)
        self.metrics = metrics or get_metrics(self.config.observability)
        self._last: Optional[AnalysisSnapshot] = None

    @property
    def last_snapshot(self) -> Optional[AnalysisSnapshot]:
        return self._last

    def analyze(self, text: str, parameters: Iterable[CalculatorParameter] = ()) -> AnalysisSnapshot:
        """Analyze *text* and return the snapshot.

        Identical text and parameters return the previous snapshot without
        recomputation.
        """
        params = list(parameters)
        key = _parameter_key(params)
        last = self._last
        if last is not None and last.text == text and last.parameters == key:
            self.logger.log_pass(len(text), last.counts, 0.0, cached=True)
            self.metrics.record_pass("cached", 0.0)
            return last

        start = time.perf_counter()
        if not text.strip():
            snapshot = AnalysisSnapshot(text=text, parameters=key, parameter_names=parameter_names(params))
        else:
            snapshot = self._run(text, params, key)
        latency = time.perf_counter() - start

        self._last = snapshot
        self.logger.log_pass(len(text), snapshot.counts, round(latency * 1000, 2))
        self.metrics.record_pass("ok", latency)
        self.metrics.record_diagnostics(snapshot.counts)
        return snapshot

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    def _run_analyzer(self, name: str, timings: Dict[str, float], func: Callable[[], T], default: T) -> T:
        start = time.perf_counter()
        try:
            return func()
        except Exception as e:
            self.logger.log_analyzer_failure(name, e)
            logger.debug("Analyzer %s failed", name, exc_info=True)
            return default
        finally:
            timings[name] = time.perf_counter() - start

    def _run(self, text: str, params: List[CalculatorParameter], key: Tuple[tuple, ...]) -> AnalysisSnapshot:
        rules = self.config.rules
        names = parameter_names(params)
        timings: Dict[str, float] = {}

        sanitized = sanitize(text)
        index = LineIndex(text)
        tokens = tokenize(sanitized, index)
        tree = self._run_analyzer(
            "scopes", timings, lambda: build_scope_tree(tokens, len(text)), None
        )

        collected: List[Diagnostic] = []
        if rules.check_strings:
            collected += self._run_analyzer(
                "strings", timings, lambda: find_unterminated_strings(text), []
            )
        if rules.check_brackets:
            collected += self._run_analyzer(
                "brackets", timings, lambda: check_brackets(sanitized), []
            )
        if rules.check_calls and tree is not None:
            validator = CallSiteValidator(self.registry, tree, names)
            collected += self._run_analyzer(
                "calls", timings, lambda: validator.validate(text, sanitized, tokens, index), []
            )
        collected += self._run_analyzer(
            "style", timings, lambda: StyleChecker(rules).check(sanitized), []
        )
        if rules.check_identifiers and tree is not None:
            resolver = IdentifierResolver(self.registry, tree, names)
            collected += self._run_analyzer(
                "identifiers", timings, lambda: resolver.resolve(tokens), []
            )

        diagnostics = dedupe(collected)
        compile_diag = self._compile_check(text, params, timings)
        if compile_diag is not None:
            diagnostics.append(compile_diag)
        diagnostics = [d for d in diagnostics if d.line > 0]

        return AnalysisSnapshot(
            text=text,
            parameters=key,
            parameter_names=names,
            scope_tree=tree,
            diagnostics=tuple(diagnostics),
            status=summarize(diagnostics),
            timings=timings,
        )

    def _compile_check(
        self, text: str, params: List[CalculatorParameter], timings: Dict[str, float]
    ) -> Optional[Diagnostic]:
        if self.compiler is None or not self.compiler.available:
            return None

        script = build_validation_script(text, params, self.registry)
        start = time.perf_counter()
        ok = True
        try:
            self.compiler.compile(script.text)
            return None
        except ScriptCompileError as e:
            ok = False
            return parse_compile_error(e, script)
        except Exception as e:
            ok = False
            self.logger.log_analyzer_failure("compiler", e)
            return None
        finally:
            elapsed = time.perf_counter() - start
            timings["compiler"] = elapsed
            self.logger.log_compile(True, ok, round(elapsed * 1000, 2))


# ---------------------------------------------------------------------------
# Live pipeline
# ---------------------------------------------------------------------------

class ValidationState(Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    RUNNING = "running"


class DiagnosticsObserver(Protocol):
    """Receives pipeline output."""

    def on_status(self, status: str) -> None:
        ...

    def on_validation_completed(self, snapshot: AnalysisSnapshot) -> None:
        ...


class ValidationPipeline:
    """Debounced, single-flight validation of a live document.

    Each edit or parameter change restarts the debounce timer.  When the
    timer fires while a pass is still running, the request is dropped and
    the next edit triggers a new pass.

    Args:
        engine: :class:`DiagnosticEngine` to run; built from *config* when
            omitted.
        config: :class:`LintConfig`; the global config when omitted.
        parameters: Initial calculator parameters.
        observers: Initial observers.
    """

    def __init__(
        self,
        engine: Optional[DiagnosticEngine] = None,
        config: Optional[LintConfig] = None,
        parameters: Iterable[CalculatorParameter] = (),
        observers: Iterable[DiagnosticsObserver] = (),
    ):
        self.config = config or (engine.config if engine is not None else get_config())
        self.engine = engine or DiagnosticEngine(config=self.config)
        self._delay = self.config.pipeline.debounce_ms / 1000.0
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=self.config.pipeline.worker_name
        )

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._text = ""
        self._parameters: List[CalculatorParameter] = list(parameters)
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._running = False
        self._closed = False
        self._published: Optional[AnalysisSnapshot] = None
        self._observers: List[DiagnosticsObserver] = list(observers)

    # -- observers ----------------------------------------------------------

    def subscribe(self, observer: DiagnosticsObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unsubscribe(self, observer: DiagnosticsObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _emit(self, method: str, value) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                getattr(observer, method)(value)
            except Exception as e:
                logger.warning("Observer %r failed in %s: %s", observer, method, e)

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> ValidationState:
        with self._lock:
            if self._running:
                return ValidationState.RUNNING
            if self._timer is not None:
                return ValidationState.DEBOUNCING
            return ValidationState.IDLE

    @property
    def published_result(self) -> Optional[AnalysisSnapshot]:
        with self._lock:
            return self._published

    @property
    def text(self) -> str:
        with self._lock:
            return self._text

    @property
    def parameters(self) -> List[CalculatorParameter]:
        with self._lock:
            return list(self._parameters)

    # -- inputs -------------------------------------------------------------

    def notify_edit(self, text: str) -> None:
        """Record the document's new text and restart the debounce timer."""
        with self._lock:
            self._text = text
            self._restart_timer()

    def update_parameters(self, parameters: Iterable[CalculatorParameter]) -> None:
        """Replace the calculator parameters and restart the debounce timer."""
        with self._lock:
            self._parameters = list(parameters)
            self._restart_timer()

    def _restart_timer(self) -> None:
        # Caller holds self._lock.
        if self._closed:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        timer = threading.Timer(self._delay, self._on_timer, args=(self._generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._closed:
                return
            self._timer = None
            if self._running:
                logger.debug("Pass already running, dropping request")
                self._idle.notify_all()
                return
            self._running = True
            text, params = self._text, list(self._parameters)
        try:
            self._executor.submit(self._run_pass, text, params)
        except RuntimeError:
            logger.debug("Worker shut down, dropping request")
            self._finish()

    # -- passes -------------------------------------------------------------

    def validate_now(self, timeout: Optional[float] = None) -> Optional[AnalysisSnapshot]:
        """Cancel any pending debounce and run a pass immediately.

        Waits for an in-flight pass first.  Returns the snapshot, or
        ``None`` if the pass failed or its result was discarded.
        """
        with self._idle:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
                self._generation += 1
            self._idle.wait_for(lambda: not self._running, timeout)
            if self._closed or self._running:
                return None
            self._running = True
            text, params = self._text, list(self._parameters)
        try:
            future = self._executor.submit(self._run_pass, text, params)
        except RuntimeError:
            logger.debug("Worker shut down, dropping request")
            self._finish()
            return None
        return future.result(timeout)

    def _run_pass(self, text: str, params: List[CalculatorParameter]) -> Optional[AnalysisSnapshot]:
        self._emit("on_status", VALIDATING_STATUS)
        try:
            snapshot = self.engine.analyze(text, params)
        except Exception as e:
            self.engine.logger.log_error(e, {"text_length": len(text)})
            self._emit("on_status", FAILURE_STATUS)
            self._finish()
            return None

        with self._lock:
            stale = text != self._text or _parameter_key(params) != _parameter_key(self._parameters)
            if stale:
                snapshot = snapshot.with_stale()
            discard = stale and self.config.pipeline.discard_stale_results
            if not discard:
                self._published = snapshot

        if discard:
            logger.debug("Discarding stale result for %d chars", len(text))
            self._finish()
            return None

        self._emit("on_status", snapshot.status)
        self._emit("on_validation_completed", snapshot)
        self._finish()
        return snapshot

    def _finish(self) -> None:
        with self._idle:
            self._running = False
            self._idle.notify_all()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no timer is pending and no pass is running."""
        with self._idle:
            return self._idle.wait_for(
                lambda: not self._running and self._timer is None, timeout
            )

    # -- lifecycle ----------------------------------------------------------

    def close(self) -> None:
        """Cancel the timer and wait for the worker to finish."""
        with self._idle:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._idle.notify_all()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "ValidationPipeline":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
