"""Public observability primitives: structured logging and log-problem collection."""

from repo_fleet.observability.logging import (
    LOG_LEVEL_NAMES,
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    parse_log_level,
    redact_fields,
    redact_text,
    reset_correlation_fields,
    set_correlation_fields,
    setup_structured_logging,
    shutdown_logging,
)
from repo_fleet.observability.problems import LogProblem, ProblemCollector

__all__ = [
    "LOG_LEVEL_NAMES",
    "LogProblem",
    "LoggingConfig",
    "ProblemCollector",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "parse_log_level",
    "redact_fields",
    "redact_text",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
]
