"""
Async evaluation units.

An AsyncUnit is one async evaluator config applied to one response. Units
whose dependency is another async config travel as `followers` of that
config's unit and are only dispatched once it reaches a terminal state,
at which point their dependency is checked again against committed rows.

AsyncUnitRunner executes a single unit; dispatchers decide where and when.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable

from loguru import logger
from pydantic import BaseModel, Field

from app.evaluation.protocols import (
    ConfigRepository,
    EvaluationRepository,
    ResponseRepository,
    RunLedger,
)
from app.evaluation.services.config_loader import ConfigSet
from app.evaluation.services.dependency_resolver import DependencyResolver
from app.evaluation.services.evaluation_service import EvaluationService
from prompt_tracker_core.domain.models import Evaluation, EvaluationContext, EvaluatorConfig
from prompt_tracker_core.evals.registry import EvaluatorRegistry
from prompt_tracker_core.runtime.context import RunContext
from prompt_tracker_core.runtime.errors import RetryableError, ServiceError
from prompt_tracker_core.runtime.retry import RetryPolicy, sync_with_retry


class UnitStatus(str, Enum):
    COMPLETED = "completed"  # Evaluation persisted with a score
    FAILED = "failed"  # Failed Evaluation persisted (retries exhausted or terminal error)
    SKIPPED = "skipped"  # Dependency unmet, nothing persisted
    ABANDONED = "abandoned"  # Response or config vanished, nothing persisted


class AsyncUnit(BaseModel):
    """Serializable description of one async evaluation."""

    response_id: str
    config_id: str
    evaluator_key: str
    request_id: str
    evaluation_context: EvaluationContext
    test_run_id: str | None = None
    check_dependencies: bool = True
    followers: list["AsyncUnit"] = Field(default_factory=list)

    model_config = {"frozen": True}

    def context(self) -> RunContext:
        return RunContext.for_worker(
            self.request_id,
            self.evaluation_context,
            test_run_id=self.test_run_id,
            check_dependencies=self.check_dependencies,
        )

    def count(self) -> int:
        """Number of units in this subtree, including itself."""
        return 1 + sum(follower.count() for follower in self.followers)


AsyncUnit.model_rebuild()


class UnitOutcome(BaseModel):
    unit: AsyncUnit
    status: UnitStatus
    evaluation: Evaluation | None = None
    reason: str = ""

    @property
    def is_skip(self) -> bool:
        return self.status == UnitStatus.SKIPPED


def build_units(config_set: ConfigSet, response_id: str, ctx: RunContext) -> list[AsyncUnit]:
    """
    Turn a subject's async configs into dispatchable unit trees.

    Roots are async configs with no dependency, or with a dependency on a
    sync (already evaluated) or disabled config. Everything else hangs
    under the unit of the async config it depends on.
    """
    async_configs = config_set.async_configs
    async_keys = {c.evaluator_key for c in async_configs}

    def make(config: EvaluatorConfig) -> AsyncUnit:
        followers = [
            make(child)
            for child in async_configs
            if child.depends_on == config.evaluator_key
        ]
        return AsyncUnit(
            response_id=response_id,
            config_id=config.id,
            evaluator_key=config.evaluator_key,
            request_id=ctx.request_id,
            evaluation_context=ctx.evaluation_context,
            test_run_id=ctx.test_run_id,
            check_dependencies=ctx.check_dependencies,
            followers=followers,
        )

    return [make(c) for c in async_configs if c.depends_on not in async_keys]


class AsyncUnitRunner:
    """
    Runs one async unit to a terminal outcome.

    With a retry policy, retryable failures are retried in-process and,
    once exhausted, recorded as a failed Evaluation. Without one (Celery
    handles retries itself) RetryableError propagates to the caller.
    Storage errors always propagate out of run(); callers hand them to
    record_failure once they stop retrying.
    """

    def __init__(
        self,
        responses: ResponseRepository,
        configs: ConfigRepository,
        evaluations: EvaluationRepository,
        registry: EvaluatorRegistry,
        ledger: RunLedger | None = None,
        retry_policy: RetryPolicy | None = None,
        on_run_drained: Callable[[str], object] | None = None,
    ):
        self.responses = responses
        self.configs = configs
        self.registry = registry
        self.ledger = ledger
        self.retry_policy = retry_policy
        self.on_run_drained = on_run_drained
        self.resolver = DependencyResolver(evaluations)
        self.evaluation_service = EvaluationService(evaluations)

    def run(self, unit: AsyncUnit, retry: bool = True) -> UnitOutcome:
        """
        Execute a unit.

        Args:
            unit: The unit to run.
            retry: Retry in-process with the runner's policy.

        Returns:
            UnitOutcome describing what was persisted (if anything).

        Raises:
            RetryableError: Only when retry is False and the attempt failed transiently.
        """
        ctx = unit.context()
        response = self.responses.get(unit.response_id)
        config = self.configs.get(unit.config_id)
        if response is None or config is None:
            missing = "response" if response is None else "evaluator config"
            logger.warning(
                f"[{ctx.request_id}] Abandoning '{unit.evaluator_key}': {missing} not found "
                f"(response={unit.response_id}, config={unit.config_id})"
            )
            return UnitOutcome(unit=unit, status=UnitStatus.ABANDONED, reason=f"{missing} not found")

        check = self.resolver.check(config, response.id, ctx)
        if not check.met:
            return UnitOutcome(unit=unit, status=UnitStatus.SKIPPED, reason=check.reason)

        attempts = 0
        evaluator = None
        try:
            evaluator = self.registry.build(config.evaluator_key, config.config)

            def attempt():
                nonlocal attempts
                attempts += 1
                return evaluator.evaluate(response)

            started = time.perf_counter()
            if retry:
                result = sync_with_retry(self.retry_policy)(attempt)()
            else:
                result = attempt()
            duration_ms = (time.perf_counter() - started) * 1000
        except RetryableError as e:
            if not retry:
                raise
            return self._failed(unit, config, e, ctx, attempts, evaluator)
        except ServiceError as e:
            # Terminal errors are recorded on the first failure
            return self._failed(unit, config, e, ctx, max(attempts, 1), evaluator)

        evaluation = self.evaluation_service.record_result(
            response, config, evaluator, result, ctx, duration_ms=duration_ms, attempts=attempts
        )
        return UnitOutcome(unit=unit, status=UnitStatus.COMPLETED, evaluation=evaluation)

    def record_failure(self, unit: AsyncUnit, error: Exception, attempts: int) -> UnitOutcome:
        """
        Persist a failed Evaluation for a unit whose retries were exhausted elsewhere.

        If the failure itself cannot be persisted, the unit's test run is
        marked as errored so that draining it does not report a result
        built from missing rows.
        """
        ctx = unit.context()
        try:
            config = self.configs.get(unit.config_id)
            if config is None:
                logger.warning(f"[{ctx.request_id}] Config {unit.config_id} vanished; failure not recorded")
                return UnitOutcome(unit=unit, status=UnitStatus.ABANDONED, reason="evaluator config not found")

            evaluator = None
            if self.registry.exists(config.evaluator_key):
                try:
                    evaluator = self.registry.build(config.evaluator_key, config.config)
                except ServiceError:
                    evaluator = None
            return self._failed(unit, config, error, ctx, attempts, evaluator)
        except Exception as e:
            logger.exception(
                f"[{ctx.request_id}] Could not record failure of '{unit.evaluator_key}' "
                f"on response {unit.response_id}: {e}"
            )
            if unit.test_run_id is not None and self.ledger is not None:
                self.ledger.fail(
                    unit.test_run_id,
                    f"Evaluator '{unit.evaluator_key}' failed and could not be recorded: {error}",
                )
            return UnitOutcome(unit=unit, status=UnitStatus.FAILED, reason=str(error))

    def _failed(self, unit, config, error, ctx, attempts, evaluator) -> UnitOutcome:
        evaluation = self.evaluation_service.record_failure(
            unit.response_id, config, error, ctx, attempts=attempts, evaluator=evaluator
        )
        return UnitOutcome(
            unit=unit, status=UnitStatus.FAILED, evaluation=evaluation, reason=str(error)
        )

    def complete(self, unit: AsyncUnit, outcome: UnitOutcome) -> int | None:
        """
        Book a terminal unit against its test run.

        Returns:
            Units still outstanding for the run, or None outside test runs.
        """
        if unit.test_run_id is None or self.ledger is None:
            return None

        remaining = self.ledger.complete_unit(
            unit.test_run_id, skipped_key=unit.evaluator_key if outcome.is_skip else None
        )
        logger.debug(
            f"[{unit.request_id}] Unit '{unit.evaluator_key}' {outcome.status.value}; "
            f"{remaining} unit(s) outstanding"
        )
        if remaining == 0 and self.on_run_drained is not None:
            self.on_run_drained(unit.test_run_id)
        return remaining
