"""
FastAPI HTTP Layer
==================
Exposes the diagnostic engine as a small HTTP service so editors that are
not written in Python can request a validation pass.

Endpoints:
  GET  /health    -> {"status": "ok", "compiler_available": bool}
  POST /validate  -> {"status": ..., "valid": ..., "diagnostics": [...]}

Usage::

    uvicorn dosage_lint.api:create_app --factory --port 8080
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from dosage_lint.config import get_config
from dosage_lint.diagnostics import DosageLintError
from dosage_lint.language import load_parameters
from dosage_lint.observability import setup_file_logging

logger = logging.getLogger("dosage_lint.api")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ValidateRequest(BaseModel):
    source: str
    parameters: List[Any] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine singleton (lazy-initialised on first request)
# ---------------------------------------------------------------------------

_engine = None


def _get_engine():
    global _engine
    if _engine is None:
        from dosage_lint.pipeline import DiagnosticEngine
        _engine = DiagnosticEngine()
        logger.info("DiagnosticEngine initialised for API worker")
    return _engine


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(engine: Optional[Any] = None):
    """Create the FastAPI application.

    File logging is enabled when ``observability.logs_dir`` is configured
    (``DOSAGE_LINT_LOGS_DIR``).

    Args:
        engine: :class:`~dosage_lint.pipeline.DiagnosticEngine` to serve;
            a shared default engine is created on first use when omitted.

    Returns:
        FastAPI app instance.

    Raises:
        ImportError: If fastapi is not installed.
    """
    from fastapi import FastAPI, HTTPException

    observability = (engine.config if engine is not None else get_config()).observability
    if observability.logs_dir:
        log_file = setup_file_logging(observability)
        logger.info("Writing logs to %s", log_file)

    app = FastAPI(
        title="Dosage Script Lint API",
        description="Static analysis for dosage-calculator scripts",
        version="1.0.0",
    )

    def current_engine():
        return engine if engine is not None else _get_engine()

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        compiler = current_engine().compiler
        return {
            "status": "ok",
            "compiler_available": bool(compiler is not None and compiler.available),
        }

    @app.post("/validate")
    def validate(req: ValidateRequest):
        """Run one analysis pass over ``req.source``.

        Returns:
            JSON representation of the analysis snapshot.
        """
        try:
            parameters = load_parameters(req.parameters)
        except DosageLintError as e:
            raise HTTPException(status_code=422, detail=str(e))

        try:
            snapshot = current_engine().analyze(req.source, parameters)
        except Exception as e:
            logger.error("Validation failed: %s", e)
            raise HTTPException(status_code=500, detail=str(e))
        return snapshot.to_dict()

    return app
