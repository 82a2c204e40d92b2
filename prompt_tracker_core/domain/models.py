"""
Domain models for the evaluation engine.

This module defines the records the engine reads and writes:
- EvaluatorConfig: Declarative binding of an evaluator to a prompt or test
- Response: The generated LLM output under evaluation
- Evaluation: One immutable verdict produced by one evaluator run
- PromptTestRun: Bookkeeping for a test run and its terminal status
- TestRunSummary: Aggregated outcome of all evaluations for a run
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from prompt_tracker_core.config import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class RunMode(str, Enum):
    """Whether an evaluator runs inline or as a background unit."""

    SYNC = "sync"
    ASYNC = "async"


class EvaluationContext(str, Enum):
    """Where an evaluation was triggered from."""

    TRACKED_CALL = "tracked_call"  # Production call tracked at runtime
    TEST_RUN = "test_run"  # Part of a prompt test run
    MANUAL = "manual"  # Triggered by a person (single re-run or human score)


class SubjectKind(str, Enum):
    """Owner of an evaluator configuration."""

    PROMPT = "prompt"
    TEST = "test"


class AggregationStrategy(str, Enum):
    """How individual evaluation scores fold into one run score."""

    WEIGHTED_AVERAGE = "weighted_average"
    SIMPLE_AVERAGE = "simple_average"
    MINIMUM = "minimum"


class TestRunStatus(str, Enum):
    """Lifecycle of a prompt test run."""

    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TestRunStatus.PASSED, TestRunStatus.FAILED, TestRunStatus.ERROR}
)


class Subject(BaseModel):
    """A prompt or a test that owns evaluator configurations.

    A test inherits the aggregation strategy of the prompt it belongs to,
    so callers resolve the strategy before building the Subject.
    """

    kind: SubjectKind
    id: str
    aggregation_strategy: AggregationStrategy = AggregationStrategy.WEIGHTED_AVERAGE

    model_config = {"frozen": True}

    @classmethod
    def prompt(cls, prompt_id: str, strategy: AggregationStrategy | str | None = None) -> "Subject":
        return cls(
            kind=SubjectKind.PROMPT,
            id=prompt_id,
            aggregation_strategy=strategy or AggregationStrategy.WEIGHTED_AVERAGE,
        )

    @classmethod
    def test(cls, test_id: str, strategy: AggregationStrategy | str | None = None) -> "Subject":
        return cls(
            kind=SubjectKind.TEST,
            id=test_id,
            aggregation_strategy=strategy or AggregationStrategy.WEIGHTED_AVERAGE,
        )


class EvaluatorConfig(BaseModel):
    """Declarative evaluator binding, read-only while evaluations run.

    `config` holds raw evaluator parameters; they are decoded into the
    evaluator's typed parameter model when the registry builds it.
    """

    id: str = Field(default_factory=_new_id)
    evaluator_key: str = Field(min_length=1)
    subject_kind: SubjectKind
    subject_id: str
    config: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    weight: float = Field(default=1.0, gt=0)
    enabled: bool = True
    run_mode: RunMode = RunMode.ASYNC
    depends_on: str | None = None
    min_dependency_score: int | None = Field(default=None, ge=0, le=100)
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @property
    def dependency_threshold(self) -> int:
        """Minimum dependency score (0-100); falls back to the configured default."""
        if self.min_dependency_score is None:
            return settings.DEFAULT_MIN_DEPENDENCY_SCORE
        return self.min_dependency_score

    @property
    def has_dependency(self) -> bool:
        return bool(self.depends_on)

    @property
    def is_async(self) -> bool:
        return self.run_mode == RunMode.ASYNC

    def sort_key(self) -> tuple:
        """Execution order: priority ascending, then creation order."""
        return (self.priority, self.created_at, self.id)

    def snapshot(self) -> dict[str, Any]:
        """Config fields copied into every Evaluation's metadata."""
        return {
            "evaluator_config_id": self.id,
            "weight": self.weight,
            "priority": self.priority,
            "run_mode": self.run_mode.value,
            "dependency": self.depends_on,
            "min_dependency_score": self.min_dependency_score,
        }


class Response(BaseModel):
    """A generated response, owned by the tracking side of the system."""

    id: str
    rendered_prompt: str = ""
    response_text: str | None = None
    prompt_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


class Evaluation(BaseModel):
    """One immutable evaluation result.

    `score` is None only for async units that exhausted their retries.
    """

    id: str = Field(default_factory=_new_id)
    response_id: str
    evaluator_key: str
    evaluator_type: str
    evaluator_config_id: str | None = None
    test_run_id: str | None = None
    score: float | None
    score_min: float = 0
    score_max: float = 100
    passed: bool
    feedback: str | None = None
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    evaluation_context: EvaluationContext = EvaluationContext.TRACKED_CALL
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @property
    def normalized_score(self) -> float | None:
        """Score mapped onto 0-1 by its own scale, clamped."""
        if self.score is None:
            return None
        span = self.score_max - self.score_min
        if span == 0:
            return 0.0
        return min(max((self.score - self.score_min) / span, 0.0), 1.0)

    @property
    def score_percentage(self) -> float | None:
        """Score mapped onto 0-100, used for dependency thresholds."""
        if self.score is None:
            return None
        span = self.score_max - self.score_min
        if span == 0:
            return 0.0
        return min(max((self.score - self.score_min) * 100 / span, 0.0), 100.0)

    @property
    def is_failed_unit(self) -> bool:
        """True for the placeholder written when an async unit gave up."""
        return self.score is None


class PromptTestRun(BaseModel):
    """A test run: one response evaluated against a test's evaluators."""

    id: str = Field(default_factory=_new_id)
    test_id: str
    prompt_id: str | None = None
    response_id: str | None = None
    status: TestRunStatus = TestRunStatus.PENDING
    passed: bool | None = None
    total_evaluators: int = 0
    passed_evaluators: int = 0
    failed_evaluators: int = 0
    skipped_evaluators: int = 0
    skipped_keys: list[str] = Field(default_factory=list)
    pending_units: int = 0
    score: float | None = None
    check_dependencies: bool = True
    aggregation_strategy: AggregationStrategy = AggregationStrategy.WEIGHTED_AVERAGE
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None

    model_config = {"frozen": True}

    @property
    def is_completed(self) -> bool:
        return self.status.is_terminal


class TestRunSummary(BaseModel):
    """Aggregated outcome of one evaluation pass over a response.

    `score` is on a 0-1 scale and is None when nothing measurable
    contributed (no evaluations, or all weights zero).
    """

    __test__ = False

    total_evaluators: int = 0
    passed_evaluators: int = 0
    failed_evaluators: int = 0
    skipped_evaluators: int = 0
    pending_evaluators: int = 0
    passed: bool = True
    score: float | None = None
    strategy: AggregationStrategy = AggregationStrategy.WEIGHTED_AVERAGE
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    skipped_keys: list[str] = Field(default_factory=list)
    evaluation_ids: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def has_measurable_outcome(self) -> bool:
        return self.score is not None

    @property
    def is_complete(self) -> bool:
        return self.pending_evaluators == 0

    @property
    def status(self) -> TestRunStatus:
        if not self.is_complete:
            return TestRunStatus.RUNNING
        return TestRunStatus.PASSED if self.passed else TestRunStatus.FAILED
