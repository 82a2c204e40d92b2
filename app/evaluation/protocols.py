"""
Evaluation module protocols.

This module defines the storage and dispatch interfaces the evaluation
engine depends on, so the orchestrator can run against PostgreSQL and
Celery in production and in-memory fakes in tests and scripts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from prompt_tracker_core.domain.models import (
    Evaluation,
    EvaluationContext,
    EvaluatorConfig,
    PromptTestRun,
    Response,
    Subject,
    SubjectKind,
    TestRunSummary,
)

if TYPE_CHECKING:
    from app.evaluation.services.async_units import AsyncUnit, UnitOutcome


@runtime_checkable
class ConfigRepository(Protocol):
    """Read access to evaluator configurations and their subjects."""

    def list_for_subject(self, subject: Subject) -> list[EvaluatorConfig]:
        """All configs (enabled or not) owned by the subject."""
        ...

    def get(self, config_id: str) -> EvaluatorConfig | None:
        """Fetch one config by id."""
        ...

    def get_subject(self, kind: SubjectKind, subject_id: str) -> Subject | None:
        """Resolve a subject together with its aggregation strategy."""
        ...


@runtime_checkable
class ResponseRepository(Protocol):
    """Read access to tracked responses."""

    def get(self, response_id: str) -> Response | None:
        """Fetch one response by id."""
        ...


@runtime_checkable
class EvaluationRepository(Protocol):
    """Append-only sink for Evaluations, also used for dependency lookups."""

    def add(self, evaluation: Evaluation) -> Evaluation:
        """Persist a new Evaluation and return it once committed."""
        ...

    def latest_for_key(
        self,
        response_id: str,
        evaluator_key: str,
        evaluation_context: EvaluationContext,
        test_run_id: str | None = None,
    ) -> Evaluation | None:
        """Most recent Evaluation for the key (ties broken by highest id)."""
        ...

    def list_for_response(
        self,
        response_id: str,
        evaluation_context: EvaluationContext | None = None,
    ) -> list[Evaluation]:
        """Evaluations for a response in creation order."""
        ...

    def list_for_test_run(self, test_run_id: str) -> list[Evaluation]:
        """Evaluations recorded for a test run in creation order."""
        ...


@runtime_checkable
class RunLedger(Protocol):
    """Ledger for test runs and their outstanding async units."""

    def create(self, run: PromptTestRun) -> PromptTestRun:
        """Insert a new pending run."""
        ...

    def get(self, test_run_id: str) -> PromptTestRun | None:
        """Fetch one run by id."""
        ...

    def start(self, test_run_id: str) -> PromptTestRun | None:
        """Claim a pending run by moving it to running; None if it was already started or finished."""
        ...

    def record_skips(self, test_run_id: str, evaluator_keys: list[str]) -> None:
        """Remember evaluators skipped for unmet dependencies."""
        ...

    def register_units(self, test_run_id: str, count: int) -> None:
        """Add outstanding async units to the run."""
        ...

    def complete_unit(self, test_run_id: str, skipped_key: str | None = None) -> int:
        """Mark one async unit terminal and return how many are still outstanding."""
        ...

    def finish(self, test_run_id: str, summary: TestRunSummary) -> PromptTestRun | None:
        """Store the final summary; no-op unless the run is still running."""
        ...

    def fail(self, test_run_id: str, error_message: str) -> None:
        """Mark the run as errored."""
        ...


@runtime_checkable
class AsyncDispatcher(Protocol):
    """Schedules async evaluation units."""

    def dispatch(self, units: list["AsyncUnit"]) -> list["UnitOutcome"]:
        """
        Schedule units (and, after each finishes, its dependents).

        Returns:
            Outcomes of the units that finished before returning; empty for
            dispatchers that only enqueue.
        """
        ...
