"""
EvaluationService: builds and persists Evaluation records.

Every Evaluation is created through this service, whether it comes from
an automated evaluator, an async unit that exhausted its retries, or a
human reviewer.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from app.evaluation.protocols import EvaluationRepository
from prompt_tracker_core.domain.exceptions import InvalidScoreError
from prompt_tracker_core.domain.models import Evaluation, EvaluationContext, EvaluatorConfig, Response
from prompt_tracker_core.evals.base import PASSING_NORMALIZED_SCORE, BaseEvaluator, EvalResult
from prompt_tracker_core.runtime.context import RunContext
from prompt_tracker_core.runtime.errors import ServiceError

HUMAN_EVALUATOR_TYPE = "human"
HUMAN_SCORE_MAX = 5


class EvaluationService:
    """
    Creates Evaluation rows.

    Usage:
        service = EvaluationService(evaluation_repo)
        evaluation = service.record_result(response, config, evaluator, result, ctx)
    """

    def __init__(self, evaluations: EvaluationRepository):
        self.evaluations = evaluations

    def record_result(
        self,
        response: Response,
        config: EvaluatorConfig,
        evaluator: BaseEvaluator,
        result: EvalResult,
        ctx: RunContext,
        duration_ms: float | None = None,
        attempts: int = 1,
    ) -> Evaluation:
        """
        Persist the result of a successful evaluator run.

        Args:
            response: Evaluated response.
            config: Originating config; its weight, priority and dependency are snapshotted.
            evaluator: The evaluator that produced the result (gives type and scale).
            result: Evaluator output.
            ctx: Run context (evaluation context, test run id).
            duration_ms: Wall time spent scoring.
            attempts: Number of attempts it took.

        Returns:
            The committed Evaluation.
        """
        metadata: dict[str, Any] = {**result.metadata, **config.snapshot(), "attempts": attempts}
        if duration_ms is not None:
            metadata["duration_ms"] = round(duration_ms, 2)

        evaluation = Evaluation(
            response_id=response.id,
            evaluator_key=config.evaluator_key,
            evaluator_type=evaluator.evaluator_type,
            evaluator_config_id=config.id,
            test_run_id=ctx.test_run_id,
            score=result.score,
            score_min=evaluator.score_min,
            score_max=evaluator.score_max,
            passed=result.passed,
            feedback=result.feedback,
            criteria_scores=result.criteria_scores,
            metadata=metadata,
            evaluation_context=ctx.evaluation_context,
        )
        saved = self.evaluations.add(evaluation)
        logger.info(
            f"[{ctx.request_id}] {config.evaluator_key}: score={result.score} "
            f"passed={result.passed}"
        )
        return saved

    def record_failure(
        self,
        response_id: str,
        config: EvaluatorConfig,
        error: Exception,
        ctx: RunContext,
        attempts: int,
        evaluator: BaseEvaluator | None = None,
    ) -> Evaluation:
        """
        Persist the placeholder for an async unit that gave up.

        The Evaluation has no score, is not passed, and its feedback
        carries the last error.
        """
        message = error.message_safe if isinstance(error, ServiceError) else str(error)
        metadata: dict[str, Any] = {
            **config.snapshot(),
            "attempts": attempts,
            "error_class": type(error).__name__,
        }
        if isinstance(error, ServiceError):
            metadata["error_code"] = error.code
            metadata["debug_id"] = error.debug_id

        evaluation = Evaluation(
            response_id=response_id,
            evaluator_key=config.evaluator_key,
            evaluator_type=evaluator.evaluator_type if evaluator else config.evaluator_key,
            evaluator_config_id=config.id,
            test_run_id=ctx.test_run_id,
            score=None,
            score_min=evaluator.score_min if evaluator else 0,
            score_max=evaluator.score_max if evaluator else 100,
            passed=False,
            feedback=f"Evaluation failed after {attempts} attempt(s): {message}",
            metadata=metadata,
            evaluation_context=ctx.evaluation_context,
        )
        saved = self.evaluations.add(evaluation)
        logger.error(
            f"[{ctx.request_id}] {config.evaluator_key} failed after {attempts} attempt(s): {message}"
        )
        return saved

    def record_human(
        self,
        response_id: str,
        score: float,
        score_min: float = 0,
        score_max: float = HUMAN_SCORE_MAX,
        passed: bool | None = None,
        feedback: str | None = None,
        criteria_scores: dict[str, float] | None = None,
        evaluator_key: str = HUMAN_EVALUATOR_TYPE,
        evaluator_id: str | None = None,
    ) -> Evaluation:
        """
        Record a score given by a person.

        Args:
            response_id: Response being reviewed.
            score: Reviewer score on score_min..score_max.
            score_min: Scale lower bound.
            score_max: Scale upper bound (defaults to a 0-5 scale).
            passed: Explicit verdict; defaults to normalized score >= 0.8.
            feedback: Reviewer comments.
            criteria_scores: Optional per-criterion scores.
            evaluator_key: Key under which dependency checks can find this score.
            evaluator_id: Who reviewed (stored in metadata).

        Returns:
            The committed Evaluation.

        Raises:
            InvalidScoreError: If the scale is empty or the score falls outside it.
        """
        if score_max <= score_min:
            raise InvalidScoreError(f"score_max ({score_max}) must be greater than score_min ({score_min})")
        if not score_min <= score <= score_max:
            raise InvalidScoreError(f"Score {score} must be between {score_min} and {score_max}")

        if passed is None:
            passed = (score - score_min) / (score_max - score_min) >= PASSING_NORMALIZED_SCORE

        evaluation = Evaluation(
            response_id=response_id,
            evaluator_key=evaluator_key,
            evaluator_type=HUMAN_EVALUATOR_TYPE,
            score=score,
            score_min=score_min,
            score_max=score_max,
            passed=passed,
            feedback=feedback,
            criteria_scores=criteria_scores or {},
            metadata={"evaluator_id": evaluator_id} if evaluator_id else {},
            evaluation_context=EvaluationContext.MANUAL,
        )
        saved = self.evaluations.add(evaluation)
        logger.info(f"Recorded human evaluation {saved.id} for response {response_id}: {score}")
        return saved
