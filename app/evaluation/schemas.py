"""
Pydantic schemas for the evaluation module.

This module contains request/response models for the evaluation API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from prompt_tracker_core.domain.models import Evaluation, PromptTestRun, TestRunSummary


# ==============================================================================
# EVALUATORS
# ==============================================================================


class EvaluatorInfoResponse(BaseModel):
    """Registry entry for one evaluator."""

    key: str
    name: str
    description: str
    category: str
    evaluator_type: str
    default_config: dict[str, Any]


# ==============================================================================
# EVALUATIONS
# ==============================================================================


class EvaluationResponse(BaseModel):
    """One evaluation result."""

    id: str
    response_id: str
    evaluator_key: str
    evaluator_type: str
    evaluator_config_id: Optional[str] = None
    test_run_id: Optional[str] = None
    score: Optional[float] = None
    score_min: float
    score_max: float
    normalized_score: Optional[float] = None
    passed: bool
    feedback: Optional[str] = None
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    evaluation_context: str
    created_at: datetime

    @classmethod
    def from_evaluation(cls, evaluation: Evaluation) -> "EvaluationResponse":
        return cls(
            **evaluation.model_dump(exclude={"evaluation_context"}),
            evaluation_context=evaluation.evaluation_context.value,
            normalized_score=evaluation.normalized_score,
        )


class HumanEvaluationRequest(BaseModel):
    """Request model for recording a human score."""

    score: float
    score_min: float = 0
    score_max: float = 5
    passed: Optional[bool] = None
    feedback: Optional[str] = None
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    evaluator_key: str = "human"
    evaluator_id: Optional[str] = Field(default=None, description="Who gave the score")


# ==============================================================================
# SUMMARIES AND TEST RUNS
# ==============================================================================


class SummaryResponse(BaseModel):
    """Aggregated outcome of an evaluation pass."""

    status: str
    passed: bool
    score: Optional[float] = None
    strategy: str
    total_evaluators: int
    passed_evaluators: int
    failed_evaluators: int
    skipped_evaluators: int
    pending_evaluators: int
    skipped_keys: list[str] = Field(default_factory=list)
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    evaluation_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: TestRunSummary) -> "SummaryResponse":
        return cls(
            **summary.model_dump(exclude={"strategy"}),
            status=summary.status.value,
            strategy=summary.strategy.value,
        )


class EvaluateResponseResult(BaseModel):
    """Response model for evaluating a tracked response."""

    response_id: str
    status: str
    task_id: Optional[str] = None
    summary: Optional[SummaryResponse] = None


class TestRunRequest(BaseModel):
    """Request model for starting a test run."""

    __test__ = False

    test_id: str
    response_id: str
    check_dependencies: bool = True
    use_async: bool = Field(default=True, description="Run via Celery instead of inline")


class TestRunResponse(BaseModel):
    """A test run with its evaluations."""

    __test__ = False

    id: str
    test_id: str
    prompt_id: Optional[str] = None
    response_id: Optional[str] = None
    status: str
    passed: Optional[bool] = None
    score: Optional[float] = None
    aggregation_strategy: str
    total_evaluators: int
    passed_evaluators: int
    failed_evaluators: int
    skipped_evaluators: int
    skipped_keys: list[str] = Field(default_factory=list)
    pending_units: int
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    task_id: Optional[str] = None
    evaluations: list[EvaluationResponse] = Field(default_factory=list)
    statistics: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_run(
        cls,
        run: PromptTestRun,
        evaluations: list[Evaluation] | None = None,
        statistics: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> "TestRunResponse":
        return cls(
            id=run.id,
            test_id=run.test_id,
            prompt_id=run.prompt_id,
            response_id=run.response_id,
            status=run.status.value,
            passed=run.passed,
            score=run.score,
            aggregation_strategy=run.aggregation_strategy.value,
            total_evaluators=run.total_evaluators,
            passed_evaluators=run.passed_evaluators,
            failed_evaluators=run.failed_evaluators,
            skipped_evaluators=run.skipped_evaluators,
            skipped_keys=run.skipped_keys,
            pending_units=run.pending_units,
            error_message=run.error_message,
            created_at=run.created_at,
            completed_at=run.completed_at,
            task_id=task_id,
            evaluations=[EvaluationResponse.from_evaluation(e) for e in evaluations or []],
            statistics=statistics or {},
        )
