"""
Task decorators for async evaluation units.
"""

import functools
import inspect

from loguru import logger

from app.evaluation import factory
from app.evaluation.services.async_units import AsyncUnit, UnitOutcome
from app.evaluation.services.dispatcher import CeleryDispatcher
from prompt_tracker_core.runtime.errors import ServiceError
from prompt_tracker_core.runtime.retry import RetryPolicy


def _is_retryable(error: Exception) -> bool:
    # Errors outside the service hierarchy (dropped connections, storage
    # hiccups) are treated as transient.
    if isinstance(error, ServiceError):
        return error.retryable
    return True


def track_async_unit(unit_arg: str = "unit", retry_policy: RetryPolicy | None = None):
    """
    Decorator to handle the lifecycle of an async evaluation unit in a Celery task.

    Handles:
    1. Decoding the serialized unit.
    2. Retrying transient failures with the task's retry budget.
    3. Recording a failed Evaluation once retries are exhausted, or at
       once for terminal errors.
    4. Booking the unit against its test run (which may finalize the run).
    5. Enqueuing the units that depend on this one.

    Steps 4 and 5 run for every unit that does not retry, so a test run
    always drains.

    The wrapped task returns the UnitOutcome; the decorator turns it into
    a JSON-serializable result.

    Args:
        unit_arg: Name of the argument holding the serialized AsyncUnit.
        retry_policy: Backoff for retries (defaults to the async evaluation policy).
    """
    policy = retry_policy or RetryPolicy.for_async_evaluations()

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            sig = inspect.signature(func)
            bound_args = sig.bind(self, *args, **kwargs)
            unit = AsyncUnit.model_validate(bound_args.arguments[unit_arg])
            runner = factory.get_async_unit_runner()
            retries = self.request.retries or 0

            try:
                outcome: UnitOutcome = func(self, *args, **kwargs)
            except Exception as e:
                if _is_retryable(e) and retries < self.max_retries:
                    countdown = policy.calculate_delay(retries)
                    logger.warning(
                        f"[{unit.request_id}] '{unit.evaluator_key}' attempt {retries + 1} failed: "
                        f"{e!r}. Retrying in {countdown:.2f}s"
                    )
                    raise self.retry(exc=e, countdown=countdown)
                outcome = runner.record_failure(unit, e, attempts=retries + 1)

            try:
                runner.complete(unit, outcome)
            finally:
                if unit.followers:
                    CeleryDispatcher().dispatch(list(unit.followers))

            return {
                "status": outcome.status.value,
                "evaluator_key": unit.evaluator_key,
                "response_id": unit.response_id,
                "test_run_id": unit.test_run_id,
                "evaluation_id": outcome.evaluation.id if outcome.evaluation else None,
                "reason": outcome.reason,
            }

        return wrapper

    return decorator
