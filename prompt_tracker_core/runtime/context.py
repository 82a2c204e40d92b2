"""
Run-scoped context for evaluation operations.

RunContext carries the correlation id, the evaluation context and the
dependency-check switch from the entry point (API request, worker task or
script) down to every evaluator run and persisted Evaluation.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from prompt_tracker_core.domain.models import EvaluationContext


class RunContext(BaseModel):
    """Context shared by all evaluator runs triggered for one response.

    Attributes:
        request_id: Correlation id used as the log prefix.
        evaluation_context: Where the run came from (tracked call, test run, manual).
        test_run_id: Test run being evaluated, if any.
        check_dependencies: When False, depends_on gates are ignored for the run.
        deadline: Optional absolute deadline for the whole run.
    """

    request_id: str
    evaluation_context: EvaluationContext = EvaluationContext.TRACKED_CALL
    test_run_id: str | None = None
    check_dependencies: bool = True
    deadline: datetime | None = None

    model_config = {"frozen": True}

    @classmethod
    def for_tracked_call(cls, response_id: str) -> "RunContext":
        """Context for evaluating a production call as soon as it is tracked."""
        return cls(
            request_id=f"resp-{response_id}-{uuid.uuid4().hex[:6]}",
            evaluation_context=EvaluationContext.TRACKED_CALL,
        )

    @classmethod
    def for_test_run(cls, test_run_id: str, check_dependencies: bool = True) -> "RunContext":
        """Context for a test run; the run id doubles as the correlation id."""
        return cls(
            request_id=test_run_id,
            evaluation_context=EvaluationContext.TEST_RUN,
            test_run_id=test_run_id,
            check_dependencies=check_dependencies,
        )

    @classmethod
    def for_worker(
        cls,
        job_id: str,
        evaluation_context: EvaluationContext | str,
        test_run_id: str | None = None,
        check_dependencies: bool = True,
    ) -> "RunContext":
        """Rebuild a context inside a background worker from task arguments.

        Args:
            job_id: Task-level id, used as request_id for tracing.
            evaluation_context: Context value as serialized in the task payload.
            test_run_id: Test run id, if the unit belongs to one.
            check_dependencies: Dependency switch of the originating run.

        Returns:
            A new RunContext configured for worker use.
        """
        return cls(
            request_id=job_id,
            evaluation_context=EvaluationContext(evaluation_context),
            test_run_id=test_run_id,
            check_dependencies=check_dependencies,
        )

    def with_deadline(self, deadline: datetime) -> "RunContext":
        """Return a copy with the given deadline."""
        return self.model_copy(update={"deadline": deadline})

    def to_task_kwargs(self) -> dict:
        """Serialize the fields a worker needs to rebuild this context."""
        return {
            "evaluation_context": self.evaluation_context.value,
            "test_run_id": self.test_run_id,
            "check_dependencies": self.check_dependencies,
        }
