"""
Hub Observability Module
========================

Structured logging with request, run and user context.
"""

from .logging_config import (
    ContextFormatter,
    OperationContext,
    OperationLogger,
    StructuredFormatter,
    current_context,
    generate_correlation_id,
    get_agent,
    get_correlation_id,
    get_run_id,
    get_user_id,
    log_exception,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "OperationContext",
    "OperationLogger",
    "current_context",
    "get_correlation_id",
    "get_run_id",
    "get_agent",
    "get_user_id",
    "generate_correlation_id",
    "StructuredFormatter",
    "ContextFormatter",
    "log_exception",
]
