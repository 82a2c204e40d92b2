"""
Shared fixtures for the prompt-tracker test suite.

The evaluation engine is assembled from in-memory stores, the local
dispatcher and a registry that includes the fake evaluators, so tests
exercise real orchestration without PostgreSQL, Redis or OpenAI.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.evaluation.services.async_units import AsyncUnitRunner
from app.evaluation.services.config_loader import ConfigLoader
from app.evaluation.services.dispatcher import LocalDispatcher
from app.evaluation.services.memory_store import (
    MemoryConfigRepository,
    MemoryEvaluationRepository,
    MemoryResponseRepository,
    MemoryRunLedger,
)
from app.evaluation.services.orchestrator import EvaluationOrchestrator
from app.evaluation.services.run_finalizer import RunFinalizer
from prompt_tracker_core.domain.models import (
    EvaluatorConfig,
    Response,
    RunMode,
    SubjectKind,
)
from prompt_tracker_core.evals.registry import EvaluatorRegistry
from prompt_tracker_core.runtime.retry import RetryPolicy
from tests.app.evaluation.fakes import TEST_EVALUATORS, FakeJudgeClient


@pytest.fixture
def fast_retry_policy():
    """Three attempts without sleeping."""
    return RetryPolicy(max_attempts=3, base_delay=0, jitter=False)


@pytest.fixture
def judge_client():
    return FakeJudgeClient()


@pytest.fixture
def registry(judge_client):
    return EvaluatorRegistry(judge_client=judge_client, evaluators=TEST_EVALUATORS)


@pytest.fixture
def response():
    return Response(
        id="resp-1",
        rendered_prompt="Greet the user and offer help.",
        response_text="Hello! Need help?",
        prompt_id="prompt-1",
    )


@pytest.fixture
def make_config():
    """Factory for configs owned by prompt-1 unless told otherwise."""

    def _make(evaluator_key: str, **overrides) -> EvaluatorConfig:
        fields = {
            "evaluator_key": evaluator_key,
            "subject_kind": SubjectKind.PROMPT,
            "subject_id": "prompt-1",
            "run_mode": RunMode.SYNC,
        }
        fields.update(overrides)
        return EvaluatorConfig(**fields)

    return _make


@pytest.fixture
def engine(registry, response, fast_retry_policy):
    """A fully wired engine on in-memory stores with the local dispatcher."""
    configs = MemoryConfigRepository()
    responses = MemoryResponseRepository([response])
    evaluations = MemoryEvaluationRepository()
    ledger = MemoryRunLedger()
    finalizer = RunFinalizer(ledger, evaluations, configs)
    runner = AsyncUnitRunner(
        responses=responses,
        configs=configs,
        evaluations=evaluations,
        registry=registry,
        ledger=ledger,
        retry_policy=fast_retry_policy,
        on_run_drained=finalizer.finalize,
    )
    dispatcher = LocalDispatcher(runner, max_workers=4)
    orchestrator = EvaluationOrchestrator(
        config_loader=ConfigLoader(configs, registry),
        responses=responses,
        evaluations=evaluations,
        ledger=ledger,
        dispatcher=dispatcher,
        configs=configs,
        finalizer=finalizer,
    )
    return SimpleNamespace(
        configs=configs,
        responses=responses,
        evaluations=evaluations,
        ledger=ledger,
        finalizer=finalizer,
        runner=runner,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        registry=registry,
    )
