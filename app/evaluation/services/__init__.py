# Evaluation services

from .aggregator import ScoreAggregator, normalize_score, score_statistics
from .async_units import AsyncUnit, AsyncUnitRunner, UnitOutcome, UnitStatus, build_units
from .config_loader import ConfigLoader, ConfigSet, validate_dependencies
from .dependency_resolver import DependencyCheck, DependencyResolver
from .dispatcher import CeleryDispatcher, LocalDispatcher
from .evaluation_service import EvaluationService
from .memory_store import (
    MemoryConfigRepository,
    MemoryEvaluationRepository,
    MemoryResponseRepository,
    MemoryRunLedger,
)
from .orchestrator import EvaluationOrchestrator
from .repositories import (
    PostgresConfigRepository,
    PostgresEvaluationRepository,
    PostgresResponseRepository,
    PostgresRunLedger,
)
from .run_finalizer import RunFinalizer

__all__ = [
    # Orchestration
    "EvaluationOrchestrator",
    "ConfigLoader",
    "ConfigSet",
    "validate_dependencies",
    "DependencyCheck",
    "DependencyResolver",
    "EvaluationService",
    "RunFinalizer",
    # Async units
    "AsyncUnit",
    "AsyncUnitRunner",
    "UnitOutcome",
    "UnitStatus",
    "build_units",
    "LocalDispatcher",
    "CeleryDispatcher",
    # Aggregation
    "ScoreAggregator",
    "normalize_score",
    "score_statistics",
    # Storage backends
    "PostgresConfigRepository",
    "PostgresResponseRepository",
    "PostgresEvaluationRepository",
    "PostgresRunLedger",
    "MemoryConfigRepository",
    "MemoryResponseRepository",
    "MemoryEvaluationRepository",
    "MemoryRunLedger",
]
