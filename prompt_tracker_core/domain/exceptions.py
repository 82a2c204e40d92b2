"""
Standard exceptions for prompt-tracker.

Configuration problems are terminal and surface before any evaluator
runs. Evaluator execution failures are retryable so async units can try
again. Missing records are terminal and are logged rather than raised by
background workers.
"""

from __future__ import annotations

from prompt_tracker_core.runtime.errors import ErrorCode, RetryableError, TerminalError


class PromptTrackerError(TerminalError):
    """Base exception for terminal prompt-tracker errors."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: str | None = None, cause: Exception | None = None):
        super().__init__(code=code or self.default_code, message_safe=message, cause=cause)


class ConfigurationError(PromptTrackerError):
    """Evaluator configuration set cannot be loaded or built."""

    default_code = ErrorCode.CONFIGURATION_ERROR


class UnknownEvaluatorError(ConfigurationError):
    """evaluator_key is not in the registry."""

    default_code = ErrorCode.UNKNOWN_EVALUATOR


class InvalidEvaluatorConfigError(ConfigurationError):
    """Evaluator parameters failed validation."""

    default_code = ErrorCode.INVALID_EVALUATOR_CONFIG


class MissingDependencyError(ConfigurationError):
    """depends_on names a key with no sibling config."""

    default_code = ErrorCode.MISSING_DEPENDENCY


class MissingRecordError(PromptTrackerError):
    """A referenced response, config or test run no longer exists."""

    default_code = ErrorCode.NOT_FOUND


class InvalidScoreError(PromptTrackerError):
    """Score outside the declared score_min..score_max range."""

    default_code = ErrorCode.INVALID_SCORE


class EvaluatorExecutionError(RetryableError):
    """An evaluator raised while scoring a response."""

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.EVALUATOR_FAILED,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message_safe=message, cause=cause)


class JudgeError(EvaluatorExecutionError):
    """The LLM judge failed, timed out, or returned unusable output."""

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.JUDGE_UNAVAILABLE,
        cause: Exception | None = None,
    ):
        super().__init__(message, code=code, cause=cause)
