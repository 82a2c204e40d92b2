"""Tests for the in-memory repositories and run ledger."""

import threading

import pytest

from app.evaluation.services.memory_store import (
    MemoryConfigRepository,
    MemoryEvaluationRepository,
    MemoryRunLedger,
)
from prompt_tracker_core.domain.models import (
    AggregationStrategy,
    Evaluation,
    EvaluationContext,
    PromptTestRun,
    Subject,
    SubjectKind,
    TestRunStatus,
    TestRunSummary,
)


@pytest.fixture
def ledger():
    return MemoryRunLedger()


@pytest.fixture
def run(ledger):
    return ledger.create(PromptTestRun(test_id="test-1", response_id="resp-1"))


class TestMemoryConfigRepository:
    def test_subjects_and_configs(self, make_config):
        configs = MemoryConfigRepository([make_config("keyword"), make_config("length", subject_id="other")])
        configs.add_subject(Subject.prompt("prompt-1", "minimum"))

        assert [c.evaluator_key for c in configs.list_for_subject(Subject.prompt("prompt-1"))] == ["keyword"]
        assert configs.get_subject("prompt", "prompt-1").aggregation_strategy == AggregationStrategy.MINIMUM
        assert configs.get_subject(SubjectKind.TEST, "prompt-1") is None
        assert configs.get("missing") is None


class TestMemoryEvaluationRepository:
    def test_filters(self):
        repo = MemoryEvaluationRepository()
        tracked = repo.add(
            Evaluation(response_id="r1", evaluator_key="k", evaluator_type="t", score=1, passed=True)
        )
        in_run = repo.add(
            Evaluation(
                response_id="r1",
                evaluator_key="k",
                evaluator_type="t",
                score=2,
                passed=True,
                test_run_id="run-1",
                evaluation_context=EvaluationContext.TEST_RUN,
            )
        )

        assert repo.list_for_response("r1") == [tracked, in_run]
        assert repo.list_for_response("r1", EvaluationContext.TEST_RUN) == [in_run]
        assert repo.list_for_test_run("run-1") == [in_run]
        assert repo.latest_for_key("r1", "k", "tracked_call") == tracked
        assert repo.latest_for_key("r1", "k", EvaluationContext.TEST_RUN, test_run_id="run-2") is None


class TestMemoryRunLedger:
    """Lifecycle transitions mirror the PostgreSQL ledger."""

    def test_start_claims_pending_run_once(self, ledger, run):
        assert ledger.start(run.id).status == TestRunStatus.RUNNING
        assert ledger.start(run.id) is None
        assert ledger.start("missing") is None

    def test_units_and_skips(self, ledger, run):
        ledger.register_units(run.id, 2)
        ledger.record_skips(run.id, ["length"])

        assert ledger.complete_unit(run.id, skipped_key="format") == 1
        assert ledger.complete_unit(run.id) == 0
        assert ledger.complete_unit(run.id) == 0
        assert ledger.get(run.id).skipped_keys == ["length", "format"]

    def test_finish_only_applies_to_running_runs(self, ledger, run):
        summary = TestRunSummary(total_evaluators=2, passed_evaluators=1, failed_evaluators=1, passed=False, score=0.5)

        assert ledger.finish(run.id, summary) is None

        ledger.start(run.id)
        finished = ledger.finish(run.id, summary)

        assert finished.status == TestRunStatus.FAILED
        assert finished.score == 0.5
        assert finished.completed_at is not None
        assert ledger.finish(run.id, TestRunSummary(passed=True)) is None
        assert ledger.get(run.id).status == TestRunStatus.FAILED

    def test_fail_leaves_terminal_runs_alone(self, ledger, run):
        ledger.fail(run.id, "boom")
        assert ledger.get(run.id).status == TestRunStatus.ERROR
        assert ledger.get(run.id).error_message == "boom"

        ledger.fail(run.id, "again")
        assert ledger.get(run.id).error_message == "boom"

    def test_concurrent_completions_count_down_exactly(self, ledger, run):
        ledger.register_units(run.id, 50)
        results = []

        def worker():
            results.append(ledger.complete_unit(run.id))

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == list(range(50))
