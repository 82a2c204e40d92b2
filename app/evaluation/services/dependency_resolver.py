"""
DependencyResolver: decides whether a config's depends_on gate is open.

A dependency is met when the most recent Evaluation of the named sibling,
for the same response and evaluation context (and the same test run when
there is one), scored at least the config's threshold on a 0-100 scale.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from app.evaluation.protocols import EvaluationRepository
from prompt_tracker_core.domain.models import EvaluatorConfig
from prompt_tracker_core.runtime.context import RunContext


@dataclass(frozen=True)
class DependencyCheck:
    met: bool
    reason: str = ""


MET = DependencyCheck(met=True)


class DependencyResolver:
    def __init__(self, evaluations: EvaluationRepository):
        self.evaluations = evaluations

    def check(self, config: EvaluatorConfig, response_id: str, ctx: RunContext) -> DependencyCheck:
        """
        Check a config's dependency against committed Evaluations.

        Args:
            config: Config whose gate is being checked.
            response_id: Response under evaluation.
            ctx: Run context (evaluation context, test run, dependency switch).

        Returns:
            DependencyCheck with a human-readable reason when unmet.
        """
        if not ctx.check_dependencies or not config.has_dependency:
            return MET

        latest = self.evaluations.latest_for_key(
            response_id,
            config.depends_on,
            ctx.evaluation_context,
            test_run_id=ctx.test_run_id,
        )
        threshold = config.dependency_threshold

        if latest is None:
            reason = f"no '{config.depends_on}' evaluation found"
        elif latest.score_percentage is None:
            reason = f"'{config.depends_on}' evaluation failed without a score"
        elif latest.score_percentage < threshold:
            reason = (
                f"'{config.depends_on}' scored {latest.score_percentage:g}%, "
                f"below threshold {threshold}%"
            )
        else:
            return MET

        logger.info(f"[{ctx.request_id}] Skipping '{config.evaluator_key}': {reason}")
        return DependencyCheck(met=False, reason=reason)

    def is_met(self, config: EvaluatorConfig, response_id: str, ctx: RunContext) -> bool:
        return self.check(config, response_id, ctx).met
