"""
spec-reconciler — observability package

File: src/spec_reconciler/observability/__init__.py
Last updated: 2026-10-17

Purpose
- Session logging with correlation fields and structlog decision events.
"""

from spec_reconciler.observability.logging import (
    LoggingSettings,
    SessionLogging,
    configure_structlog,
    correlation_scope,
    get_active_logging,
    get_correlation_context,
    redact,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingSettings",
    "SessionLogging",
    "configure_structlog",
    "correlation_scope",
    "get_active_logging",
    "get_correlation_context",
    "redact",
    "setup_logging",
    "shutdown_logging",
]
