"""Tests for the async unit dispatchers."""

from unittest.mock import MagicMock, patch

import pytest

from app.evaluation.services.async_units import AsyncUnit, UnitOutcome, UnitStatus
from app.evaluation.services.dispatcher import CeleryDispatcher, LocalDispatcher
from prompt_tracker_core.config import settings
from prompt_tracker_core.domain.models import EvaluationContext


def _unit(key, followers=()):
    return AsyncUnit(
        response_id="resp-1",
        config_id=f"cfg-{key}",
        evaluator_key=key,
        request_id="req-1",
        evaluation_context=EvaluationContext.TRACKED_CALL,
        followers=list(followers),
    )


class OrderRecordingRunner:
    """Runner stub that records the order units ran and finished in."""

    def __init__(self):
        self.ran: list[str] = []
        self.completed: list[str] = []

    def run(self, unit, retry=True):
        self.ran.append(unit.evaluator_key)
        return UnitOutcome(unit=unit, status=UnitStatus.COMPLETED)

    def complete(self, unit, outcome):
        self.completed.append(unit.evaluator_key)


class BrokenStorageRunner(OrderRecordingRunner):
    """Runner stub whose storage fails for one evaluator key."""

    def __init__(self, broken):
        super().__init__()
        self.broken = broken
        self.failures: list[tuple[str, str, int]] = []

    def run(self, unit, retry=True):
        outcome = super().run(unit, retry)
        if unit.evaluator_key == self.broken:
            raise ConnectionError("db down")
        return outcome

    def record_failure(self, unit, error, attempts):
        self.failures.append((unit.evaluator_key, str(error), attempts))
        return UnitOutcome(unit=unit, status=UnitStatus.FAILED, reason=str(error))


class TestLocalDispatcher:
    """In-process thread pool dispatch."""

    def test_defaults_to_configured_concurrency(self):
        assert LocalDispatcher(OrderRecordingRunner()).max_workers == settings.EVALUATION_WORKER_CONCURRENCY

    def test_empty_dispatch(self):
        assert LocalDispatcher(OrderRecordingRunner()).dispatch([]) == []

    def test_followers_run_after_their_prerequisite(self):
        runner = OrderRecordingRunner()
        chain = _unit("format", [_unit("llm_judge", [_unit("pattern_match")])])

        outcomes = LocalDispatcher(runner, max_workers=4).dispatch([_unit("length"), chain])

        assert len(outcomes) == 4
        assert runner.ran.index("format") < runner.ran.index("llm_judge") < runner.ran.index("pattern_match")
        assert sorted(runner.completed) == ["format", "length", "llm_judge", "pattern_match"]

    def test_each_unit_is_completed_after_it_runs(self):
        runner = MagicMock()
        runner.run.side_effect = lambda unit: UnitOutcome(unit=unit, status=UnitStatus.SKIPPED)
        unit = _unit("length")

        (outcome,) = LocalDispatcher(runner, max_workers=1).dispatch([unit])

        runner.complete.assert_called_once_with(unit, outcome)

    def test_unexpected_error_is_recorded_and_followers_still_run(self):
        runner = BrokenStorageRunner(broken="format")
        chain = _unit("format", [_unit("llm_judge")])

        outcomes = LocalDispatcher(runner, max_workers=2).dispatch([chain])

        statuses = {o.unit.evaluator_key: o.status for o in outcomes}
        assert statuses == {"format": UnitStatus.FAILED, "llm_judge": UnitStatus.COMPLETED}
        assert runner.failures == [("format", "db down", 1)]
        assert sorted(runner.completed) == ["format", "llm_judge"]

    def test_errors_while_booking_are_raised_after_followers_ran(self):
        runner = OrderRecordingRunner()
        runner.complete = MagicMock(side_effect=[ConnectionError("ledger down"), None])
        chain = _unit("format", [_unit("llm_judge")])

        with pytest.raises(ConnectionError, match="ledger down"):
            LocalDispatcher(runner, max_workers=2).dispatch([chain])

        assert runner.ran == ["format", "llm_judge"]


class TestCeleryDispatcher:
    """Enqueueing units as Celery tasks."""

    def test_enqueues_root_units_only(self):
        chain = _unit("format", [_unit("llm_judge")])
        with patch("app.workers.tasks.run_async_evaluation") as mock_task:
            mock_task.delay.return_value = MagicMock(id="task-1")

            outcomes = CeleryDispatcher().dispatch([chain])

        assert outcomes == []
        mock_task.delay.assert_called_once()
        payload = mock_task.delay.call_args.kwargs["unit"]
        assert payload["evaluator_key"] == "format"
        assert payload["followers"][0]["evaluator_key"] == "llm_judge"
        assert payload["evaluation_context"] == "tracked_call"
