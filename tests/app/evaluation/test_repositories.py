"""
Unit tests for the PostgreSQL repositories.

The repositories should:
1. Map rows onto the domain models
2. Guard run transitions in SQL (pending -> running -> terminal)
3. Commit every write before returning
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from app.evaluation.services.repositories import (
    PostgresConfigRepository,
    PostgresEvaluationRepository,
    PostgresResponseRepository,
    PostgresRunLedger,
)
from prompt_tracker_core.domain.models import (
    AggregationStrategy,
    Evaluation,
    EvaluationContext,
    PromptTestRun,
    RunMode,
    Subject,
    SubjectKind,
    TestRunStatus,
    TestRunSummary,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _run_row(status="running", pending_units=0, skipped_keys=None):
    return (
        "run-1", "test-1", "prompt-1", "resp-1", status, None,
        0, 0, 0, 0,
        skipped_keys if skipped_keys is not None else [], pending_units, None, True, "minimum",
        None, {}, NOW, None,
    )


class TestConfigRepository:
    """Tests for reading evaluator configs."""

    def test_list_for_subject_maps_rows(self, mock_postgres):
        mock_postgres["cursor"].fetchall.return_value = [
            ("cfg-1", "keyword", "prompt", "prompt-1", '{"required_keywords": ["hi"]}', 0, 2.0,
             True, "sync", None, None, NOW),
        ]

        configs = PostgresConfigRepository().list_for_subject(Subject.prompt("prompt-1"))

        assert len(configs) == 1
        assert configs[0].config == {"required_keywords": ["hi"]}
        assert configs[0].run_mode == RunMode.SYNC
        assert configs[0].weight == 2.0
        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "ORDER BY priority ASC, created_at ASC" in sql
        assert params == ("prompt", "prompt-1")

    def test_get_missing_config(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = None

        assert PostgresConfigRepository().get("cfg-404") is None

    def test_test_subject_uses_prompt_strategy(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = ("simple_average",)

        subject = PostgresConfigRepository().get_subject(SubjectKind.TEST, "test-1")

        assert subject.aggregation_strategy == AggregationStrategy.SIMPLE_AVERAGE
        assert "JOIN prompts" in mock_postgres["cursor"].execute.call_args[0][0]

    def test_null_strategy_defaults_to_weighted(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = (None,)

        subject = PostgresConfigRepository().get_subject(SubjectKind.PROMPT, "prompt-1")

        assert subject.aggregation_strategy == AggregationStrategy.WEIGHTED_AVERAGE


class TestResponseRepository:
    def test_get_response(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = ("resp-1", None, "Hello", "prompt-1", NOW)

        response = PostgresResponseRepository().get("resp-1")

        assert response.rendered_prompt == ""
        assert response.prompt_id == "prompt-1"


class TestEvaluationRepository:
    """Tests for evaluation storage."""

    def test_add_inserts_and_commits(self, mock_postgres):
        evaluation = Evaluation(
            response_id="resp-1",
            evaluator_key="keyword",
            evaluator_type="KeywordEvaluator",
            score=100,
            passed=True,
            metadata={"weight": 1.0},
        )

        PostgresEvaluationRepository().add(evaluation)

        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "INSERT INTO evaluations" in sql
        assert params[0] == evaluation.id
        assert json.loads(params[12]) == {"weight": 1.0}
        assert params[13] == "tracked_call"
        mock_postgres["connection"].commit.assert_called_once()

    def test_latest_for_key_orders_by_creation_then_id(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = None

        PostgresEvaluationRepository().latest_for_key(
            "resp-1", "keyword", EvaluationContext.TEST_RUN, test_run_id="run-1"
        )

        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "ORDER BY created_at DESC, id DESC" in sql
        assert "prompt_test_run_id = %s" in sql
        assert params == ("resp-1", "keyword", "test_run", "run-1")

    def test_latest_without_run_does_not_filter_by_run(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = None

        PostgresEvaluationRepository().latest_for_key("resp-1", "keyword", "tracked_call")

        assert "prompt_test_run_id" not in mock_postgres["cursor"].execute.call_args[0][0].split("WHERE")[1]

    def test_row_mapping(self, mock_postgres):
        mock_postgres["cursor"].fetchall.return_value = [
            ("ev-1", "resp-1", "llm_judge", "LlmJudgeEvaluator", None, "run-1", None, 0, 5, False,
             "failed", {}, {"attempts": 3}, "test_run", NOW),
        ]

        (evaluation,) = PostgresEvaluationRepository().list_for_test_run("run-1")

        assert evaluation.is_failed_unit is True
        assert evaluation.test_run_id == "run-1"
        assert evaluation.metadata == {"attempts": 3}
        assert evaluation.evaluation_context == EvaluationContext.TEST_RUN


class TestRunLedger:
    """Tests for test run bookkeeping."""

    def test_create_inserts_pending_run(self, mock_postgres):
        run = PromptTestRun(test_id="test-1", response_id="resp-1")

        PostgresRunLedger().create(run)

        params = mock_postgres["cursor"].execute.call_args[0][1]
        assert params[4] == "pending"
        mock_postgres["connection"].commit.assert_called_once()

    def test_start_only_claims_pending_runs(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = None

        assert PostgresRunLedger().start("run-1") is None
        assert "status = 'pending'" in mock_postgres["cursor"].execute.call_args[0][0]

    def test_start_returns_running_run(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = _run_row(status="running")

        run = PostgresRunLedger().start("run-1")

        assert run.status == TestRunStatus.RUNNING
        assert run.aggregation_strategy == AggregationStrategy.MINIMUM

    def test_complete_unit_returns_remaining(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = (2,)

        assert PostgresRunLedger().complete_unit("run-1") == 2
        assert "GREATEST(pending_units - 1, 0)" in mock_postgres["cursor"].execute.call_args[0][0]

    def test_complete_unit_appends_skip(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = (0,)

        PostgresRunLedger().complete_unit("run-1", skipped_key="length")

        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "jsonb_build_array" in sql
        assert params == ("length", "run-1")

    def test_complete_unit_for_missing_run(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = None

        assert PostgresRunLedger().complete_unit("gone") == 0

    def test_finish_is_guarded_by_running_status(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = None
        summary = TestRunSummary(total_evaluators=1, passed_evaluators=1, passed=True, score=1.0)

        assert PostgresRunLedger().finish("run-1", summary) is None

        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "status = 'running'" in sql
        assert params[0] == "passed"

    def test_fail_skips_terminal_runs(self, mock_postgres):
        PostgresRunLedger().fail("run-1", "boom")

        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "status IN ('pending', 'running')" in sql
        assert params[0] == "boom"

    def test_row_decodes_text_json(self, mock_postgres):
        mock_postgres["cursor"].fetchone.return_value = _run_row(skipped_keys='["length"]', pending_units=None)

        run = PostgresRunLedger().get("run-1")

        assert run.skipped_keys == ["length"]
        assert run.pending_units == 0


@pytest.fixture
def mock_postgres():
    """Provides mock PostgreSQL connection and cursor."""
    with patch("app.evaluation.services.repositories.get_db_connection") as mock_get_conn:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()

        mock_conn.cursor.return_value = mock_cursor
        mock_conn.__enter__ = MagicMock(return_value=mock_conn)
        mock_conn.__exit__ = MagicMock(return_value=False)

        mock_get_conn.return_value = mock_conn

        yield {
            "connection": mock_conn,
            "cursor": mock_cursor,
        }
