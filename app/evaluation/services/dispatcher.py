"""
Async unit dispatchers.

- LocalDispatcher: runs units on a bounded thread pool inside the current
  process and waits for them (API sync mode, scripts, tests).
- CeleryDispatcher: enqueues one Celery task per root unit; workers
  enqueue followers as their prerequisites finish.
"""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from loguru import logger

from app.evaluation.services.async_units import AsyncUnit, AsyncUnitRunner, UnitOutcome
from prompt_tracker_core.config import settings


class LocalDispatcher:
    """
    In-process dispatcher backed by a ThreadPoolExecutor.

    A follower is submitted only after its prerequisite's future has
    finished, so its dependency check sees the committed result.
    """

    def __init__(self, runner: AsyncUnitRunner, max_workers: int | None = None):
        self.runner = runner
        self.max_workers = max_workers or settings.EVALUATION_WORKER_CONCURRENCY

    def _run_unit(self, unit: AsyncUnit) -> UnitOutcome:
        try:
            outcome = self.runner.run(unit)
        except Exception as e:
            logger.warning(f"[{unit.request_id}] '{unit.evaluator_key}' raised {e!r}; recording failure")
            outcome = self.runner.record_failure(unit, e, attempts=1)
        self.runner.complete(unit, outcome)
        return outcome

    def dispatch(self, units: list[AsyncUnit]) -> list[UnitOutcome]:
        outcomes: list[UnitOutcome] = []
        errors: list[BaseException] = []
        if not units:
            return outcomes

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="evaluation-unit"
        ) as pool:
            pending: dict[Future, AsyncUnit] = {
                pool.submit(self._run_unit, unit): unit for unit in units
            }
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    unit = pending.pop(future)
                    for follower in unit.followers:
                        pending[pool.submit(self._run_unit, follower)] = follower
                    error = future.exception()
                    if error is not None:
                        errors.append(error)
                    else:
                        outcomes.append(future.result())

        logger.debug(f"Local dispatch finished {len(outcomes)} unit(s)")
        if errors:
            raise errors[0]
        return outcomes


class CeleryDispatcher:
    """Enqueues units on the evaluation Celery queue and returns immediately."""

    def dispatch(self, units: list[AsyncUnit]) -> list[UnitOutcome]:
        from app.workers.tasks import run_async_evaluation

        for unit in units:
            result = run_async_evaluation.delay(unit=unit.model_dump(mode="json"))
            logger.info(
                f"[{unit.request_id}] Enqueued '{unit.evaluator_key}' "
                f"({unit.count()} unit(s) in chain) as task {result.id}"
            )
        return []
