"""
ScoreAggregator: folds a response's Evaluations into a TestRunSummary.

Scores are normalized per evaluation to 0-1 and combined with the
subject's strategy. The pass/fail gate is independent of the strategy:
the run passes only if every contributing evaluation passed.
"""

from __future__ import annotations

import statistics
from typing import Callable

from prompt_tracker_core.domain.exceptions import ConfigurationError
from prompt_tracker_core.domain.models import AggregationStrategy, Evaluation, TestRunSummary

DEFAULT_WEIGHT = 1.0

# (normalized score, weight) pairs -> overall score, or None when nothing measurable
StrategyFn = Callable[[list[tuple[float, float]]], "float | None"]


def weighted_average(scored: list[tuple[float, float]]) -> float | None:
    total_weight = sum(weight for _, weight in scored)
    if total_weight == 0:
        return None
    return sum(score * weight for score, weight in scored) / total_weight


def simple_average(scored: list[tuple[float, float]]) -> float | None:
    if not scored:
        return None
    return sum(score for score, _ in scored) / len(scored)


def minimum(scored: list[tuple[float, float]]) -> float | None:
    if not scored:
        return None
    return min(score for score, _ in scored)


STRATEGIES: dict[AggregationStrategy, StrategyFn] = {
    AggregationStrategy.WEIGHTED_AVERAGE: weighted_average,
    AggregationStrategy.SIMPLE_AVERAGE: simple_average,
    AggregationStrategy.MINIMUM: minimum,
}


def normalize_score(score: float, score_min: float = 0, score_max: float = 100) -> float:
    """Map a score to 0-1 on its own scale, clamped; a zero-width scale maps to 0."""
    span = score_max - score_min
    if span == 0:
        return 0.0
    return min(max((score - score_min) / span, 0.0), 1.0)


def aggregate_criteria_scores(evaluations: list[Evaluation]) -> dict[str, float]:
    """Mean score per criterion name across evaluations that report it."""
    collected: dict[str, list[float]] = {}
    for evaluation in evaluations:
        for name, value in evaluation.criteria_scores.items():
            collected.setdefault(name, []).append(value)
    return {name: sum(values) / len(values) for name, values in collected.items()}


def score_statistics(evaluations: list[Evaluation]) -> dict[str, float | int | None]:
    """Count, min, max, average and median of normalized scores."""
    scores = [e.normalized_score for e in evaluations if e.normalized_score is not None]
    if not scores:
        return {"count": 0, "min": None, "max": None, "avg": None, "median": None}
    return {
        "count": len(scores),
        "min": min(scores),
        "max": max(scores),
        "avg": sum(scores) / len(scores),
        "median": statistics.median(scores),
    }


class ScoreAggregator:
    """
    Aggregates Evaluations with a pluggable strategy.

    Usage:
        aggregator = ScoreAggregator()
        summary = aggregator.aggregate(evaluations, AggregationStrategy.WEIGHTED_AVERAGE)
    """

    def resolve_strategy(self, strategy: AggregationStrategy | str) -> StrategyFn:
        try:
            return STRATEGIES[AggregationStrategy(strategy)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"Unknown aggregation strategy '{strategy}'") from None

    @staticmethod
    def weight_for(evaluation: Evaluation, weights: dict[str, float] | None = None) -> float:
        """Config weight, else the weight snapshot taken at evaluation time, else 1.0."""
        if weights and evaluation.evaluator_config_id in weights:
            return weights[evaluation.evaluator_config_id]
        snapshot = evaluation.metadata.get("weight")
        if isinstance(snapshot, (int, float)) and not isinstance(snapshot, bool):
            return float(snapshot)
        return DEFAULT_WEIGHT

    def aggregate(
        self,
        evaluations: list[Evaluation],
        strategy: AggregationStrategy | str = AggregationStrategy.WEIGHTED_AVERAGE,
        weights: dict[str, float] | None = None,
        skipped_keys: list[str] | None = None,
        pending: int = 0,
    ) -> TestRunSummary:
        """
        Fold evaluations into a summary.

        Args:
            evaluations: Evaluations produced by one pass over a response.
            strategy: Score combination strategy.
            weights: Current config weights keyed by evaluator_config_id.
            skipped_keys: Evaluator keys skipped for unmet dependencies.
            pending: Async units not yet finished.

        Returns:
            TestRunSummary with a 0-1 score (None when nothing measurable).
        """
        strategy_fn = self.resolve_strategy(strategy)
        skipped_keys = list(skipped_keys or [])

        scored = [
            (e.normalized_score, self.weight_for(e, weights))
            for e in evaluations
            if e.normalized_score is not None
        ]
        passed_count = sum(1 for e in evaluations if e.passed)

        return TestRunSummary(
            total_evaluators=len(evaluations),
            passed_evaluators=passed_count,
            failed_evaluators=len(evaluations) - passed_count,
            skipped_evaluators=len(skipped_keys),
            pending_evaluators=pending,
            passed=all(e.passed for e in evaluations),
            score=strategy_fn(scored),
            strategy=AggregationStrategy(strategy),
            criteria_scores=aggregate_criteria_scores(evaluations),
            skipped_keys=skipped_keys,
            evaluation_ids=[e.id for e in evaluations],
        )
