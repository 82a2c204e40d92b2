"""
Service error model with retry semantics.

Every failure that crosses a component boundary (judge calls, storage
writes, worker tasks) is expressed as a ServiceError so that the async
evaluation path can decide whether a unit is worth another attempt.
Whether an error is retryable is a property of its class.
"""

from __future__ import annotations

import uuid
from typing import Any, ClassVar


class ServiceError(Exception):
    """Service error carrying a machine-readable code.

    Attributes:
        code: Error code for programmatic handling (see ErrorCode).
        message_safe: Message safe to log, persist in feedback, or return.
        message_debug: Optional detail for local debugging only.
        cause: Optional underlying exception.
        debug_id: Short identifier used to correlate log lines.
        retryable: Whether the failed operation may be attempted again.
    """

    retryable: ClassVar[bool] = False

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.cause = cause
        self.debug_id = debug_id or uuid.uuid4().hex[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for API error bodies (debug detail excluded)."""
        return {"code": self.code, "message": self.message_safe, "debug_id": self.debug_id}


class RetryableError(ServiceError):
    """Transient failure: judge timeouts, rate limits, dropped connections."""

    retryable = True


class TerminalError(ServiceError):
    """Permanent failure: bad configuration, missing records, invalid scores."""


class ErrorCode:
    """Error codes shared by the evaluation engine, workers and API."""

    # Judge connectivity
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"

    # Records
    NOT_FOUND = "NOT_FOUND"

    # Configuration
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_EVALUATOR = "UNKNOWN_EVALUATOR"
    INVALID_EVALUATOR_CONFIG = "INVALID_EVALUATOR_CONFIG"
    MISSING_DEPENDENCY = "MISSING_DEPENDENCY"

    # Evaluation
    EVALUATOR_FAILED = "EVALUATOR_FAILED"
    JUDGE_UNAVAILABLE = "JUDGE_UNAVAILABLE"
    JUDGE_INVALID_OUTPUT = "JUDGE_INVALID_OUTPUT"
    INVALID_SCORE = "INVALID_SCORE"

    INTERNAL_ERROR = "INTERNAL_ERROR"
