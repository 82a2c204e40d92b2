"""
Retry policy configuration and decorator.

Async evaluation units and judge calls are retried with exponential
backoff and jitter. Only RetryableError triggers another attempt; any
other exception propagates immediately.
"""

from __future__ import annotations

import functools
import random
import time
from typing import Any, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel

from prompt_tracker_core.config import settings

from .errors import RetryableError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    The delay before retry N is min(base_delay * exponential_base ** N, max_delay),
    plus up to 25% jitter when enabled.

    Attributes:
        max_attempts: Maximum number of attempts (including the initial one).
        base_delay: Initial delay in seconds between attempts.
        max_delay: Cap on the backoff delay in seconds.
        exponential_base: Base for exponential backoff.
        jitter: Whether to add random jitter to delays.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    model_config = {"frozen": True}

    @classmethod
    def for_async_evaluations(cls) -> "RetryPolicy":
        """Policy for async evaluation units: the first attempt plus the configured retries."""
        return cls(
            max_attempts=settings.ASYNC_EVALUATION_MAX_RETRIES + 1,
            base_delay=settings.ASYNC_EVALUATION_RETRY_DELAY,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay before the next attempt.

        Args:
            attempt: The attempt number that just failed (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay += delay * 0.25 * random.random()

        return delay


DEFAULT_RETRY_POLICY = RetryPolicy()


def sync_with_retry(
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying synchronous functions on RetryableError.

    Args:
        policy: Retry policy to use. Defaults to DEFAULT_RETRY_POLICY.
        on_retry: Optional callback called before each retry with
                  (attempt, exception, delay).

    Returns:
        Decorated function with retry behavior.

    Example:
        @sync_with_retry(RetryPolicy(max_attempts=5))
        def score(response):
            ...
    """
    retry_policy = policy or DEFAULT_RETRY_POLICY

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except RetryableError as e:
                    if attempt + 1 >= retry_policy.max_attempts:
                        logger.warning(
                            f"[{e.debug_id}] {func.__name__} gave up after "
                            f"{retry_policy.max_attempts} attempt(s): {e.message_safe}"
                        )
                        raise

                    delay = retry_policy.calculate_delay(attempt)
                    logger.info(
                        f"[{e.debug_id}] {func.__name__} attempt {attempt + 1}/"
                        f"{retry_policy.max_attempts} failed, retrying in {delay:.2f}s: {e.message_safe}"
                    )
                    if on_retry:
                        on_retry(attempt, e, delay)
                    time.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
