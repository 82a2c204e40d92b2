"""
EvaluationOrchestrator: runs every configured evaluator against a response.

Flow for one response:
1. Load and validate the subject's configs (fails fast on a bad set)
2. Sync pass, sequential in priority order; each result is committed
   before the next dependency check
3. Async pass: async configs become units handed to the dispatcher;
   units that depend on another async config run after it
4. Aggregate whatever has finished into a TestRunSummary

Test runs add bookkeeping around this: a re-entrancy guard, skip and unit
counters on the ledger, and a terminal status once all units finish.
"""

from __future__ import annotations

import time
import uuid

from loguru import logger

from app.evaluation.protocols import (
    AsyncDispatcher,
    ConfigRepository,
    EvaluationRepository,
    ResponseRepository,
    RunLedger,
)
from app.evaluation.services.aggregator import ScoreAggregator
from app.evaluation.services.async_units import build_units
from app.evaluation.services.config_loader import ConfigLoader
from app.evaluation.services.dependency_resolver import DependencyResolver
from app.evaluation.services.evaluation_service import EvaluationService
from app.evaluation.services.run_finalizer import RunFinalizer
from prompt_tracker_core.domain.models import (
    Evaluation,
    EvaluationContext,
    EvaluatorConfig,
    PromptTestRun,
    Response,
    Subject,
    SubjectKind,
    TestRunSummary,
)
from prompt_tracker_core.runtime.context import RunContext


class EvaluationOrchestrator:
    """
    Drives evaluator execution for tracked calls, test runs and manual re-runs.

    Usage:
        orchestrator = get_evaluation_orchestrator()
        summary = orchestrator.evaluate(response, Subject.prompt("prompt-1"))
    """

    def __init__(
        self,
        config_loader: ConfigLoader,
        responses: ResponseRepository,
        evaluations: EvaluationRepository,
        ledger: RunLedger,
        dispatcher: AsyncDispatcher,
        configs: ConfigRepository,
        aggregator: ScoreAggregator | None = None,
        finalizer: RunFinalizer | None = None,
    ):
        self.config_loader = config_loader
        self.responses = responses
        self.evaluations = evaluations
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.configs = configs
        self.aggregator = aggregator or ScoreAggregator()
        self.finalizer = finalizer or RunFinalizer(ledger, evaluations, configs, self.aggregator)
        self.resolver = DependencyResolver(evaluations)
        self.evaluation_service = EvaluationService(evaluations)

    def evaluate(
        self,
        response: Response,
        subject: Subject,
        ctx: RunContext | None = None,
        check_dependencies: bool = True,
    ) -> TestRunSummary:
        """
        Run all enabled evaluators of a subject against a response.

        Args:
            response: Response under evaluation.
            subject: Prompt or test owning the configs.
            ctx: Run context; defaults to a tracked-call context.
            check_dependencies: When False, depends_on gates are ignored.

        Returns:
            Summary of the evaluations finished by the time dispatch returns.
            `pending_evaluators` counts async units still queued elsewhere.

        Raises:
            ConfigurationError: The config set is invalid; nothing was run.
            ServiceError: A sync evaluator failed; earlier results stay committed.
        """
        if ctx is None:
            ctx = RunContext.for_tracked_call(response.id)
        if not check_dependencies and ctx.check_dependencies:
            ctx = ctx.model_copy(update={"check_dependencies": False})

        config_set = self.config_loader.load(subject)
        logger.info(
            f"[{ctx.request_id}] Evaluating response {response.id}: "
            f"{len(config_set.sync_configs)} sync, {len(config_set.async_configs)} async"
        )

        evaluations: list[Evaluation] = []
        skipped_keys: list[str] = []

        for config in config_set.sync_configs:
            check = self.resolver.check(config, response.id, ctx)
            if not check.met:
                skipped_keys.append(config.evaluator_key)
                continue

            evaluator = config_set.evaluator_for(config)
            started = time.perf_counter()
            result = evaluator.evaluate(response)
            duration_ms = (time.perf_counter() - started) * 1000
            evaluations.append(
                self.evaluation_service.record_result(
                    response, config, evaluator, result, ctx, duration_ms=duration_ms
                )
            )

        if ctx.test_run_id and skipped_keys:
            self.ledger.record_skips(ctx.test_run_id, skipped_keys)

        units = build_units(config_set, response.id, ctx)
        total_units = sum(unit.count() for unit in units)
        if ctx.test_run_id and total_units:
            self.ledger.register_units(ctx.test_run_id, total_units)

        outcomes = self.dispatcher.dispatch(units) if units else []
        for outcome in outcomes:
            if outcome.is_skip:
                skipped_keys.append(outcome.unit.evaluator_key)
            elif outcome.evaluation is not None:
                evaluations.append(outcome.evaluation)

        summary = self.aggregator.aggregate(
            evaluations,
            subject.aggregation_strategy,
            weights=config_set.weights(),
            skipped_keys=skipped_keys,
            pending=total_units - len(outcomes),
        )
        logger.info(
            f"[{ctx.request_id}] {summary.passed_evaluators}/{summary.total_evaluators} passed, "
            f"{summary.skipped_evaluators} skipped, {summary.pending_evaluators} pending, "
            f"score={summary.score}"
        )
        return summary

    def evaluate_one(
        self,
        response: Response,
        config: EvaluatorConfig,
        ctx: RunContext | None = None,
    ) -> Evaluation:
        """
        Run a single config against a response, ignoring its siblings.

        No dependency check is made and the Evaluation is recorded in the
        manual context unless a context is given.
        """
        if ctx is None:
            ctx = RunContext(
                request_id=f"manual-{response.id}-{uuid.uuid4().hex[:6]}",
                evaluation_context=EvaluationContext.MANUAL,
                check_dependencies=False,
            )

        evaluator = self.config_loader.build(config)
        started = time.perf_counter()
        result = evaluator.evaluate(response)
        duration_ms = (time.perf_counter() - started) * 1000
        return self.evaluation_service.record_result(
            response, config, evaluator, result, ctx, duration_ms=duration_ms
        )

    def evaluate_tracked_response(
        self, response_id: str, check_dependencies: bool = True
    ) -> TestRunSummary | None:
        """Evaluate a production response against its prompt's configs."""
        response = self.responses.get(response_id)
        if response is None:
            logger.warning(f"Response {response_id} not found; nothing to evaluate")
            return None
        if response.prompt_id is None:
            logger.warning(f"Response {response_id} is not linked to a prompt; nothing to evaluate")
            return None

        subject = self.configs.get_subject(SubjectKind.PROMPT, response.prompt_id)
        if subject is None:
            subject = Subject.prompt(response.prompt_id)
        return self.evaluate(
            response,
            subject,
            RunContext.for_tracked_call(response.id),
            check_dependencies=check_dependencies,
        )

    def create_test_run(
        self,
        test_id: str,
        response_id: str,
        check_dependencies: bool = True,
    ) -> PromptTestRun:
        """Create a pending run that inherits the aggregation strategy of its test."""
        subject = self.configs.get_subject(SubjectKind.TEST, test_id)
        if subject is None:
            subject = Subject.test(test_id)
        response = self.responses.get(response_id)

        run = PromptTestRun(
            test_id=test_id,
            prompt_id=response.prompt_id if response else None,
            response_id=response_id,
            check_dependencies=check_dependencies,
            aggregation_strategy=subject.aggregation_strategy,
        )
        return self.ledger.create(run)

    def run_test(
        self, test_run_id: str, check_dependencies: bool | None = None
    ) -> TestRunSummary | None:
        """
        Execute a test run.

        Runs already in a terminal state are left untouched. A configuration
        error or a failing sync evaluator marks the run as `error` and
        propagates.

        Args:
            test_run_id: Run to execute.
            check_dependencies: Overrides the flag stored on the run.

        Returns:
            The run summary, or None if the run was not executed.
        """
        run = self.ledger.get(test_run_id)
        if run is None:
            logger.warning(f"[{test_run_id}] Test run not found")
            return None
        if run.is_completed:
            logger.info(f"[{test_run_id}] Test run already {run.status.value}; not re-running")
            return None

        response = self.responses.get(run.response_id) if run.response_id else None
        if response is None:
            message = f"Response {run.response_id} not found"
            logger.warning(f"[{test_run_id}] {message}")
            self.ledger.fail(test_run_id, message)
            return None

        if self.ledger.start(test_run_id) is None:
            logger.info(f"[{test_run_id}] Test run already claimed by another worker")
            return None

        if check_dependencies is None:
            check_dependencies = run.check_dependencies
        ctx = RunContext.for_test_run(test_run_id, check_dependencies=check_dependencies)
        subject = Subject.test(run.test_id, run.aggregation_strategy)

        try:
            summary = self.evaluate(response, subject, ctx)
        except Exception as e:
            self.ledger.fail(test_run_id, f"{type(e).__name__}: {e}")
            logger.exception(f"[{test_run_id}] Test run errored: {e}")
            raise

        if summary.is_complete:
            self.finalizer.finalize(test_run_id)
        return summary

    def finalize_test_run(self, test_run_id: str) -> TestRunSummary | None:
        """Record the terminal status of a run whose async units have all finished."""
        return self.finalizer.finalize(test_run_id)
