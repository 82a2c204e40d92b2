"""
Evaluation module factory.

This module provides factory functions to create instances of evaluation
services, handling dependency injection and configuration. The storage
backend and dispatch mode are selected by settings.
"""

from __future__ import annotations

from functools import lru_cache

from app.evaluation.protocols import (
    AsyncDispatcher,
    ConfigRepository,
    EvaluationRepository,
    ResponseRepository,
    RunLedger,
)
from app.evaluation.services.aggregator import ScoreAggregator
from app.evaluation.services.async_units import AsyncUnitRunner
from app.evaluation.services.config_loader import ConfigLoader
from app.evaluation.services.dispatcher import CeleryDispatcher, LocalDispatcher
from app.evaluation.services.evaluation_service import EvaluationService
from app.evaluation.services.memory_store import (
    MemoryConfigRepository,
    MemoryEvaluationRepository,
    MemoryResponseRepository,
    MemoryRunLedger,
)
from app.evaluation.services.orchestrator import EvaluationOrchestrator
from app.evaluation.services.repositories import (
    PostgresConfigRepository,
    PostgresEvaluationRepository,
    PostgresResponseRepository,
    PostgresRunLedger,
)
from app.evaluation.services.run_finalizer import RunFinalizer
from prompt_tracker_core.config import settings
from prompt_tracker_core.domain.exceptions import ConfigurationError
from prompt_tracker_core.evals.registry import EvaluatorRegistry
from prompt_tracker_core.infrastructure.openai_client import OpenAIJudgeClient
from prompt_tracker_core.runtime.retry import RetryPolicy


def _use_memory_store() -> bool:
    if settings.EVALUATION_STORE not in ("postgres", "memory"):
        raise ConfigurationError(f"Unknown EVALUATION_STORE '{settings.EVALUATION_STORE}'")
    return settings.EVALUATION_STORE == "memory"


@lru_cache()
def get_evaluator_registry() -> EvaluatorRegistry:
    """Get the evaluator registry, wired to the OpenAI judge client."""
    return EvaluatorRegistry(judge_client=OpenAIJudgeClient())


@lru_cache()
def get_config_repository() -> ConfigRepository:
    """Get the evaluator config repository."""
    return MemoryConfigRepository() if _use_memory_store() else PostgresConfigRepository()


@lru_cache()
def get_response_repository() -> ResponseRepository:
    """Get the tracked response repository."""
    return MemoryResponseRepository() if _use_memory_store() else PostgresResponseRepository()


@lru_cache()
def get_evaluation_repository() -> EvaluationRepository:
    """Get the evaluation repository."""
    return MemoryEvaluationRepository() if _use_memory_store() else PostgresEvaluationRepository()


@lru_cache()
def get_run_ledger() -> RunLedger:
    """Get the test run ledger."""
    return MemoryRunLedger() if _use_memory_store() else PostgresRunLedger()


def get_evaluation_service() -> EvaluationService:
    """Get the service that records Evaluations (used for human scores)."""
    return EvaluationService(get_evaluation_repository())


@lru_cache()
def get_run_finalizer() -> RunFinalizer:
    """Get the run finalizer."""
    return RunFinalizer(
        ledger=get_run_ledger(),
        evaluations=get_evaluation_repository(),
        configs=get_config_repository(),
        aggregator=ScoreAggregator(),
    )


@lru_cache()
def get_async_unit_runner() -> AsyncUnitRunner:
    """
    Get the async unit runner.

    Wires the run finalizer as the drain callback so the unit that
    finishes a test run's work also records its terminal status.
    """
    return AsyncUnitRunner(
        responses=get_response_repository(),
        configs=get_config_repository(),
        evaluations=get_evaluation_repository(),
        registry=get_evaluator_registry(),
        ledger=get_run_ledger(),
        retry_policy=RetryPolicy.for_async_evaluations(),
        on_run_drained=get_run_finalizer().finalize,
    )


@lru_cache()
def get_async_dispatcher() -> AsyncDispatcher:
    """Get the dispatcher selected by EVALUATION_DISPATCH_MODE."""
    mode = settings.EVALUATION_DISPATCH_MODE
    if mode == "celery":
        return CeleryDispatcher()
    if mode == "local":
        return LocalDispatcher(get_async_unit_runner())
    raise ConfigurationError(f"Unknown EVALUATION_DISPATCH_MODE '{mode}'")


@lru_cache()
def get_evaluation_orchestrator() -> EvaluationOrchestrator:
    """
    Get the evaluation orchestrator.

    Wires up dependencies: config loader, repositories, ledger, dispatcher, finalizer.
    """
    registry = get_evaluator_registry()
    configs = get_config_repository()
    return EvaluationOrchestrator(
        config_loader=ConfigLoader(configs, registry),
        responses=get_response_repository(),
        evaluations=get_evaluation_repository(),
        ledger=get_run_ledger(),
        dispatcher=get_async_dispatcher(),
        configs=configs,
        aggregator=ScoreAggregator(),
        finalizer=get_run_finalizer(),
    )
