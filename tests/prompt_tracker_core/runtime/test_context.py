"""Unit tests for RunContext."""

from datetime import datetime, timezone

import pytest

from prompt_tracker_core.domain.models import EvaluationContext
from prompt_tracker_core.runtime.context import RunContext


class TestRunContextFactories:
    """Tests for the RunContext constructors."""

    def test_for_tracked_call(self):
        ctx = RunContext.for_tracked_call("resp-9")

        assert ctx.request_id.startswith("resp-resp-9-")
        assert ctx.evaluation_context == EvaluationContext.TRACKED_CALL
        assert ctx.test_run_id is None
        assert ctx.check_dependencies is True

    def test_for_test_run_uses_run_id_for_correlation(self):
        ctx = RunContext.for_test_run("run-1", check_dependencies=False)

        assert ctx.request_id == "run-1"
        assert ctx.test_run_id == "run-1"
        assert ctx.evaluation_context == EvaluationContext.TEST_RUN
        assert ctx.check_dependencies is False

    def test_for_worker_accepts_serialized_context(self):
        """Workers receive the context as a plain string."""
        ctx = RunContext.for_worker("job-1", "manual", test_run_id=None)

        assert ctx.request_id == "job-1"
        assert ctx.evaluation_context == EvaluationContext.MANUAL

    def test_for_worker_rejects_unknown_context(self):
        with pytest.raises(ValueError):
            RunContext.for_worker("job-1", "nightly")


class TestRunContextBehaviour:
    """Copies and serialization."""

    def test_is_frozen(self):
        ctx = RunContext(request_id="r")
        with pytest.raises(Exception):
            ctx.request_id = "other"

    def test_with_deadline_returns_copy(self):
        ctx = RunContext(request_id="r")
        deadline = datetime(2030, 1, 1, tzinfo=timezone.utc)

        updated = ctx.with_deadline(deadline)

        assert updated.deadline == deadline
        assert ctx.deadline is None

    def test_to_task_kwargs_round_trips_through_for_worker(self):
        ctx = RunContext.for_test_run("run-2", check_dependencies=False)

        rebuilt = RunContext.for_worker("job-2", **ctx.to_task_kwargs())

        assert rebuilt.evaluation_context == ctx.evaluation_context
        assert rebuilt.test_run_id == "run-2"
        assert rebuilt.check_dependencies is False
