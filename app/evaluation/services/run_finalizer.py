"""
RunFinalizer: closes a test run once all of its work is terminal.

Called inline when a run has no async units, and by whichever unit
drains the run's outstanding counter otherwise. Finishing is guarded by
the ledger, so a second call for the same run changes nothing.
"""

from __future__ import annotations

from loguru import logger

from app.evaluation.protocols import ConfigRepository, EvaluationRepository, RunLedger
from app.evaluation.services.aggregator import ScoreAggregator
from prompt_tracker_core.domain.models import TestRunSummary


class RunFinalizer:
    def __init__(
        self,
        ledger: RunLedger,
        evaluations: EvaluationRepository,
        configs: ConfigRepository,
        aggregator: ScoreAggregator | None = None,
    ):
        self.ledger = ledger
        self.evaluations = evaluations
        self.configs = configs
        self.aggregator = aggregator or ScoreAggregator()

    def summarize(self, test_run_id: str) -> TestRunSummary | None:
        """Aggregate the committed Evaluations of a run without changing it."""
        run = self.ledger.get(test_run_id)
        if run is None:
            return None

        evaluations = self.evaluations.list_for_test_run(test_run_id)
        weights = {}
        for evaluation in evaluations:
            config_id = evaluation.evaluator_config_id
            if config_id is None or config_id in weights:
                continue
            config = self.configs.get(config_id)
            if config is not None:
                weights[config_id] = config.weight

        return self.aggregator.aggregate(
            evaluations,
            run.aggregation_strategy,
            weights=weights,
            skipped_keys=run.skipped_keys,
            pending=run.pending_units,
        )

    def finalize(self, test_run_id: str) -> TestRunSummary | None:
        """
        Record the terminal status of a run.

        Returns:
            The summary that was stored, or None if the run is missing,
            still has outstanding units, or was already finished.
        """
        summary = self.summarize(test_run_id)
        if summary is None:
            logger.warning(f"[{test_run_id}] Cannot finalize: test run not found")
            return None
        if not summary.is_complete:
            logger.debug(f"[{test_run_id}] {summary.pending_evaluators} unit(s) still outstanding")
            return None

        finished = self.ledger.finish(test_run_id, summary)
        if finished is None:
            logger.debug(f"[{test_run_id}] Already finished, leaving as is")
            return None

        logger.info(
            f"[{test_run_id}] Test run {finished.status.value}: "
            f"{summary.passed_evaluators}/{summary.total_evaluators} passed, "
            f"{summary.skipped_evaluators} skipped, score={summary.score}"
        )
        return summary
