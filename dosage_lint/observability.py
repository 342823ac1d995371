"""
Observability
=============
Structured logging for validation passes with optional Prometheus metrics.
"""

import logging
import json
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict
from datetime import datetime, timezone

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

EVENTS_LOGGER = "dosage_lint.events"

# Fields emitted first, in this order, when a record carries them.
_EVENT_FIELDS = ("event", "analyzer", "text_length", "counts", "latency_ms", "cached", "available", "ok")


class JsonFormatter(logging.Formatter):
    """One JSON object per record: base fields, then pass/compile fields, then other extras."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        for key in _EVENT_FIELDS:
            if key in extras:
                log_data[key] = extras.pop(key)
        log_data.update(extras)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_file_logging(
    config=None,
    log_dir: Optional[str] = None,
    log_name: str = "dosage_lint.log",
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> Path:
    """Attach a rotating file handler to the ``dosage_lint`` logger.

    The directory is *log_dir*, else ``config.logs_dir``, else ``./logs``.
    Records are written as JSON unless ``config.log_format`` says otherwise.
    Calling this twice for the same file does not add a second handler.

    Returns:
        Path to the log file.
    """
    log_path = Path(log_dir or getattr(config, "logs_dir", None) or "./logs")
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / log_name

    target = os.path.abspath(log_file)
    loggers = [logging.getLogger("dosage_lint"), logging.getLogger(EVENTS_LOGGER)]
    if any(getattr(h, "baseFilename", None) == target for h in loggers[0].handlers):
        return log_file

    handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
    )
    if config is None or config.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"))
    handler.setLevel(getattr(logging, config.log_level) if config is not None else logging.DEBUG)

    # The events logger does not propagate, so it gets the handler directly.
    for target_logger in loggers:
        target_logger.addHandler(handler)
    loggers[0].setLevel(logging.DEBUG)
    return log_file


class StructuredLogger:
    """Structured logging for validation passes."""

    def __init__(self, name: str = "dosage_lint", config=None):
        """Initialize structured logger.

        Args:
            name: Logger name.
            config: ObservabilityConfig instance (optional).
        """
        log_level = "INFO"
        log_format = "json"

        if config is not None:
            log_level = config.log_level
            log_format = config.log_format

        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level))

        # A file handler may already be attached by setup_file_logging.
        if not any(type(h) is logging.StreamHandler for h in self.logger.handlers):
            handler = logging.StreamHandler(sys.stderr)

            if log_format == "json":
                handler.setFormatter(JsonFormatter())
            else:
                handler.setFormatter(
                    logging.Formatter(
                        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                    )
                )

            self.logger.addHandler(handler)
        self.logger.propagate = False

    def log_pass(self, text_length: int, counts: Dict[str, int], latency_ms: float, cached: bool = False):
        """Log a completed validation pass."""
        self.logger.info(
            "Validation Pass",
            extra={
                "event": "validation_pass",
                "text_length": text_length,
                "counts": counts,
                "latency_ms": latency_ms,
                "cached": cached,
            },
        )

    def log_analyzer_failure(self, analyzer: str, error: Exception):
        """Log an analyzer that raised and was skipped."""
        self.logger.warning(
            "Analyzer Failed",
            extra={
                "event": "analyzer_failure",
                "analyzer": analyzer,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )

    def log_compile(self, available: bool, ok: bool, latency_ms: float):
        """Log an external compiler check."""
        self.logger.debug(
            "Compile Check",
            extra={
                "event": "compile_check",
                "available": available,
                "ok": ok,
                "latency_ms": latency_ms,
            },
        )

    def log_error(self, error: Exception, context: Optional[Dict] = None):
        """Log an error with context."""
        self.logger.error(
            "Error",
            extra={
                "event": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "context": context or {},
            },
            exc_info=True,
        )


class MetricsCollector:
    """Prometheus metrics collector (optional)."""

    def __init__(self, config=None):
        self.enabled = False

        if config is not None and config.prometheus_enabled:
            self._initialize_prometheus(config)

    def _initialize_prometheus(self, config):
        """Initialize Prometheus metrics."""
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            self.passes_total = Counter(
                "dosage_lint_passes_total", "Validation passes", ["status"]
            )
            self.pass_latency = Histogram(
                "dosage_lint_pass_latency_seconds",
                "Validation pass latency",
                buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
            )
            self.diagnostics_total = Counter(
                "dosage_lint_diagnostics_total", "Diagnostics published", ["severity"]
            )

            start_http_server(config.prometheus_port)
            self.enabled = True
            logging.getLogger("dosage_lint.observability").info(
                "Prometheus metrics on port %d", config.prometheus_port
            )

        except ImportError:
            logging.getLogger("dosage_lint.observability").warning(
                "Prometheus not installed (pip install prometheus-client)"
            )
        except Exception as e:
            logging.getLogger("dosage_lint.observability").warning(
                "Could not initialize Prometheus: %s", e
            )

    def record_pass(self, status: str, latency: float):
        if not self.enabled:
            return
        self.passes_total.labels(status=status).inc()
        self.pass_latency.observe(latency)

    def record_diagnostics(self, counts: Dict[str, int]):
        if not self.enabled:
            return
        for severity, count in counts.items():
            self.diagnostics_total.labels(severity=severity).inc(count)


# ---------------------------------------------------------------------------
# Singleton accessors
# ---------------------------------------------------------------------------

_logger_instance: Optional[StructuredLogger] = None
_metrics_instance: Optional[MetricsCollector] = None


def get_logger(config=None) -> StructuredLogger:
    """Return the global ``StructuredLogger`` singleton.

    Passing *config* on the first call configures the logger; later calls
    return the cached instance.
    """
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = StructuredLogger(EVENTS_LOGGER, config)
    return _logger_instance


def get_metrics(config=None) -> MetricsCollector:
    """Return the global ``MetricsCollector`` singleton."""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = MetricsCollector(config)
    return _metrics_instance
