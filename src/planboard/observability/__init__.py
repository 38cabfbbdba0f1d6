"""Structured logging, correlation scopes and structlog routing."""

from planboard.observability.logging import (
    LoggingConfig,
    LoggingSession,
    active_session,
    configure_structlog,
    correlation_scope,
    current_correlation,
    redact,
    setup_logging,
    shutdown_logging,
    start_logging,
)

__all__ = [
    "LoggingConfig",
    "LoggingSession",
    "active_session",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "redact",
    "setup_logging",
    "shutdown_logging",
    "start_logging",
]
