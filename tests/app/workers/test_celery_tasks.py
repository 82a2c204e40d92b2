"""
Unit tests for Celery app configuration and tasks.

Tests cover:
1. Celery app configuration (broker, backend)
2. Task registration
3. Task execution with the orchestrator mocked
"""

from unittest.mock import MagicMock, patch

import pytest

from prompt_tracker_core.domain.exceptions import MissingDependencyError
from prompt_tracker_core.domain.models import TestRunSummary


class TestCeleryAppConfiguration:
    """Tests for Celery app setup."""

    def test_celery_app_uses_redis_broker(self):
        """Celery app should be configured with Redis broker."""
        from app.workers.celery_app import celery_app

        assert "redis" in celery_app.conf.broker_url

    def test_celery_app_uses_redis_backend(self):
        """Celery app should use Redis as result backend."""
        from app.workers.celery_app import celery_app

        assert "redis" in celery_app.conf.result_backend

    def test_celery_app_has_task_serializer_json(self):
        """Units travel as JSON."""
        from app.workers.celery_app import celery_app

        assert celery_app.conf.task_serializer == "json"
        assert celery_app.conf.worker_prefetch_multiplier == 1


class TestTaskRegistration:
    @pytest.mark.parametrize("name", ["run_test_evaluations", "evaluate_tracked_response", "run_async_evaluation"])
    def test_task_is_registered(self, name):
        import app.workers.tasks  # noqa: F401
        from app.workers.celery_app import celery_app

        assert f"app.workers.tasks.{name}" in celery_app.tasks

    def test_async_evaluation_retry_budget(self):
        from app.workers.tasks import run_async_evaluation
        from prompt_tracker_core.config import settings

        assert run_async_evaluation.max_retries == settings.ASYNC_EVALUATION_MAX_RETRIES
        assert run_async_evaluation.acks_late is True


class TestRunTestEvaluationsTask:
    """Tests for the run_test_evaluations task."""

    def test_returns_summary(self, mock_orchestrator):
        from app.workers.tasks import run_test_evaluations

        mock_orchestrator.run_test.return_value = TestRunSummary(total_evaluators=1, passed_evaluators=1, score=1.0)

        result = run_test_evaluations.run(test_run_id="run-1")

        assert result["status"] == "passed"
        assert result["summary"]["score"] == 1.0
        mock_orchestrator.run_test.assert_called_once_with("run-1", check_dependencies=None)

    def test_passes_dependency_override(self, mock_orchestrator):
        from app.workers.tasks import run_test_evaluations

        mock_orchestrator.run_test.return_value = None

        result = run_test_evaluations.run(test_run_id="run-1", check_dependencies=False)

        assert result == {"status": "skipped", "test_run_id": "run-1"}
        mock_orchestrator.run_test.assert_called_once_with("run-1", check_dependencies=False)

    def test_service_error_is_reported_not_raised(self, mock_orchestrator):
        from app.workers.tasks import run_test_evaluations

        mock_orchestrator.run_test.side_effect = MissingDependencyError("length depends on keyword")

        result = run_test_evaluations.run(test_run_id="run-1")

        assert result["status"] == "error"
        assert result["error"]["code"] == "MISSING_DEPENDENCY"


class TestEvaluateTrackedResponseTask:
    def test_returns_pending_status_while_units_run(self, mock_orchestrator):
        from app.workers.tasks import evaluate_tracked_response

        mock_orchestrator.evaluate_tracked_response.return_value = TestRunSummary(pending_evaluators=2)

        result = evaluate_tracked_response.run(response_id="resp-1")

        assert result["status"] == "running"
        assert result["summary"]["pending_evaluators"] == 2
        mock_orchestrator.evaluate_tracked_response.assert_called_once_with("resp-1", check_dependencies=True)

    def test_passes_dependency_override(self, mock_orchestrator):
        from app.workers.tasks import evaluate_tracked_response

        mock_orchestrator.evaluate_tracked_response.return_value = TestRunSummary(total_evaluators=1)

        evaluate_tracked_response.run(response_id="resp-1", check_dependencies=False)

        mock_orchestrator.evaluate_tracked_response.assert_called_once_with("resp-1", check_dependencies=False)

    def test_missing_response_is_skipped(self, mock_orchestrator):
        from app.workers.tasks import evaluate_tracked_response

        mock_orchestrator.evaluate_tracked_response.return_value = None

        assert evaluate_tracked_response.run(response_id="gone")["status"] == "skipped"


# --- Fixtures ---


@pytest.fixture
def mock_orchestrator():
    """Patches the factory so tasks get a mock orchestrator."""
    with patch("app.evaluation.factory.get_evaluation_orchestrator") as mock_get:
        orchestrator = MagicMock()
        mock_get.return_value = orchestrator
        yield orchestrator
