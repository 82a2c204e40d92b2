"""
Service runtime layer for prompt-tracker.

Shared infrastructure for reliability and tracing:
- RunContext: Run-scoped context with correlation ids
- ServiceError: Standardized errors with retry semantics
- RetryPolicy: Configurable retry behavior for async evaluation units
"""

from .context import RunContext
from .errors import ErrorCode, RetryableError, ServiceError, TerminalError
from .retry import RetryPolicy, sync_with_retry

__all__ = [
    "RunContext",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "ErrorCode",
    "RetryPolicy",
    "sync_with_retry",
]
