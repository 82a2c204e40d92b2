"""
In-memory storage backend for the evaluation engine.

Implements the same repository and ledger protocols as the PostgreSQL
repositories, for local development, the offline runner and tests.
All state lives in process; every operation takes the store's lock.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from loguru import logger

from prompt_tracker_core.domain.models import (
    Evaluation,
    EvaluationContext,
    EvaluatorConfig,
    PromptTestRun,
    Response,
    Subject,
    SubjectKind,
    TestRunStatus,
    TestRunSummary,
)


class MemoryConfigRepository:
    """
    Evaluator configs and subjects held in dictionaries.

    Usage:
        configs = MemoryConfigRepository()
        configs.add_subject(Subject.prompt("prompt-1", "minimum"))
        configs.add(EvaluatorConfig(evaluator_key="length", subject_kind="prompt", subject_id="prompt-1"))
    """

    def __init__(self, configs: list[EvaluatorConfig] | None = None):
        self._lock = threading.Lock()
        self._configs: dict[str, EvaluatorConfig] = {}
        self._subjects: dict[tuple[SubjectKind, str], Subject] = {}
        for config in configs or []:
            self.add(config)

    def add(self, config: EvaluatorConfig) -> EvaluatorConfig:
        with self._lock:
            self._configs[config.id] = config
        return config

    def add_subject(self, subject: Subject) -> Subject:
        with self._lock:
            self._subjects[(subject.kind, subject.id)] = subject
        return subject

    def list_for_subject(self, subject: Subject) -> list[EvaluatorConfig]:
        with self._lock:
            configs = [
                c
                for c in self._configs.values()
                if c.subject_kind == subject.kind and c.subject_id == subject.id
            ]
        return sorted(configs, key=EvaluatorConfig.sort_key)

    def get(self, config_id: str) -> EvaluatorConfig | None:
        with self._lock:
            return self._configs.get(config_id)

    def get_subject(self, kind: SubjectKind, subject_id: str) -> Subject | None:
        with self._lock:
            return self._subjects.get((SubjectKind(kind), subject_id))


class MemoryResponseRepository:
    def __init__(self, responses: list[Response] | None = None):
        self._lock = threading.Lock()
        self._responses: dict[str, Response] = {r.id: r for r in responses or []}

    def add(self, response: Response) -> Response:
        with self._lock:
            self._responses[response.id] = response
        return response

    def get(self, response_id: str) -> Response | None:
        with self._lock:
            return self._responses.get(response_id)


class MemoryEvaluationRepository:
    """Append-only list of Evaluations."""

    def __init__(self):
        self._lock = threading.Lock()
        self._evaluations: list[Evaluation] = []

    def add(self, evaluation: Evaluation) -> Evaluation:
        with self._lock:
            self._evaluations.append(evaluation)
        return evaluation

    def all(self) -> list[Evaluation]:
        with self._lock:
            return list(self._evaluations)

    def latest_for_key(
        self,
        response_id: str,
        evaluator_key: str,
        evaluation_context: EvaluationContext,
        test_run_id: str | None = None,
    ) -> Evaluation | None:
        context = EvaluationContext(evaluation_context)
        candidates = [
            e
            for e in self.all()
            if e.response_id == response_id
            and e.evaluator_key == evaluator_key
            and e.evaluation_context == context
            and (test_run_id is None or e.test_run_id == test_run_id)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda e: (e.created_at, e.id))

    def list_for_response(
        self,
        response_id: str,
        evaluation_context: EvaluationContext | None = None,
    ) -> list[Evaluation]:
        return [
            e
            for e in self.all()
            if e.response_id == response_id
            and (evaluation_context is None or e.evaluation_context == evaluation_context)
        ]

    def list_for_test_run(self, test_run_id: str) -> list[Evaluation]:
        return [e for e in self.all() if e.test_run_id == test_run_id]


class MemoryRunLedger:
    """Test runs keyed by id; updates replace the frozen record under the lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._runs: dict[str, PromptTestRun] = {}

    def _update(self, test_run_id: str, **changes) -> PromptTestRun:
        run = self._runs[test_run_id].model_copy(update=changes)
        self._runs[test_run_id] = run
        return run

    def create(self, run: PromptTestRun) -> PromptTestRun:
        with self._lock:
            self._runs[run.id] = run
        logger.info(f"[{run.id}] Created test run for test {run.test_id}")
        return run

    def get(self, test_run_id: str) -> PromptTestRun | None:
        with self._lock:
            return self._runs.get(test_run_id)

    def start(self, test_run_id: str) -> PromptTestRun | None:
        with self._lock:
            run = self._runs.get(test_run_id)
            if run is None or run.status != TestRunStatus.PENDING:
                return None
            return self._update(test_run_id, status=TestRunStatus.RUNNING)

    def record_skips(self, test_run_id: str, evaluator_keys: list[str]) -> None:
        with self._lock:
            run = self._runs.get(test_run_id)
            if run is not None:
                self._update(test_run_id, skipped_keys=[*run.skipped_keys, *evaluator_keys])

    def register_units(self, test_run_id: str, count: int) -> None:
        with self._lock:
            run = self._runs.get(test_run_id)
            if run is not None:
                self._update(test_run_id, pending_units=run.pending_units + count)

    def complete_unit(self, test_run_id: str, skipped_key: str | None = None) -> int:
        with self._lock:
            run = self._runs.get(test_run_id)
            if run is None:
                return 0
            changes = {"pending_units": max(run.pending_units - 1, 0)}
            if skipped_key is not None:
                changes["skipped_keys"] = [*run.skipped_keys, skipped_key]
            return self._update(test_run_id, **changes).pending_units

    def finish(self, test_run_id: str, summary: TestRunSummary) -> PromptTestRun | None:
        with self._lock:
            run = self._runs.get(test_run_id)
            if run is None or run.status != TestRunStatus.RUNNING:
                return None
            return self._update(
                test_run_id,
                status=summary.status,
                passed=summary.passed,
                score=summary.score,
                total_evaluators=summary.total_evaluators,
                passed_evaluators=summary.passed_evaluators,
                failed_evaluators=summary.failed_evaluators,
                skipped_evaluators=summary.skipped_evaluators,
                completed_at=datetime.now(timezone.utc),
            )

    def fail(self, test_run_id: str, error_message: str) -> None:
        with self._lock:
            run = self._runs.get(test_run_id)
            if run is None or run.is_completed:
                return
            self._update(
                test_run_id,
                status=TestRunStatus.ERROR,
                passed=False,
                error_message=error_message,
                completed_at=datetime.now(timezone.utc),
            )
        logger.error(f"[{test_run_id}] Test run marked as error: {error_message}")
