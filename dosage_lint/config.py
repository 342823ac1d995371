"""
Lint Configuration
==================
Centralized configuration management with validation.
"""

import os
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

load_dotenv()


class PipelineConfig(BaseModel):
    """Configuration for the debounced validation pipeline."""
    debounce_ms: int = Field(
        default_factory=lambda: int(os.getenv("DOSAGE_LINT_DEBOUNCE_MS", "500"))
    )
    discard_stale_results: bool = False
    worker_name: str = "dosage-lint-worker"

    @field_validator("debounce_ms")
    @classmethod
    def validate_debounce(cls, v):
        if v < 0:
            raise ValueError("debounce_ms must be >= 0")
        return v


class CompilerConfig(BaseModel):
    """Configuration for the external script compiler check."""
    enabled: bool = True
    node_path: Optional[str] = Field(default_factory=lambda: os.getenv("DOSAGE_LINT_NODE"))
    timeout_seconds: float = 10.0


class RulesConfig(BaseModel):
    """Per-analyzer toggles."""
    check_strings: bool = True
    check_brackets: bool = True
    check_calls: bool = True
    check_identifiers: bool = True
    check_missing_semicolon: bool = True
    check_loose_equality: bool = True
    check_infinite_loop: bool = True
    check_quote_consistency: bool = True


class ObservabilityConfig(BaseModel):
    """Configuration for logging and metrics."""
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: str = "json"
    logs_dir: Optional[str] = Field(default_factory=lambda: os.getenv("DOSAGE_LINT_LOGS_DIR"))
    prometheus_enabled: bool = False
    prometheus_port: int = 8000


class LintConfig(BaseModel):
    """Complete dosage-script lint configuration."""

    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    compiler: CompilerConfig = Field(default_factory=CompilerConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# Singleton
_config: Optional[LintConfig] = None


def get_config() -> LintConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = LintConfig()
    return _config


def reload_config() -> LintConfig:
    """Reload configuration from environment."""
    global _config
    load_dotenv(override=True)
    _config = LintConfig()
    return _config
