"""
PostgreSQL repositories for the evaluation engine.

Tables (owned by the tracking application's migrations):
- evaluator_configs: declarative evaluator bindings (read-only here)
- prompts / prompt_tests: subjects, for the aggregation strategy
- llm_responses: tracked responses (read-only here)
- evaluations: append-only evaluation results
- prompt_test_runs: test run status and async unit bookkeeping

Every operation opens its own connection and commits before returning.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from prompt_tracker_core.domain.models import (
    AggregationStrategy,
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
from prompt_tracker_core.infrastructure.postgres import get_db_connection


def _json_value(value: Any, default: Any) -> Any:
    """JSONB columns come back decoded, text columns as strings."""
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


CONFIG_COLUMNS = """
    id, evaluator_key, subject_kind, subject_id, config, priority, weight,
    enabled, run_mode, depends_on, min_dependency_score, created_at
"""


class PostgresConfigRepository:
    """Reads evaluator configs and subjects."""

    def list_for_subject(self, subject: Subject) -> list[EvaluatorConfig]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {CONFIG_COLUMNS}
                FROM evaluator_configs
                WHERE subject_kind = %s AND subject_id = %s
                ORDER BY priority ASC, created_at ASC, id ASC
                """,
                (subject.kind.value, subject.id),
            )
            rows = cursor.fetchall()

        return [self._row_to_config(row) for row in rows]

    def get(self, config_id: str) -> EvaluatorConfig | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {CONFIG_COLUMNS} FROM evaluator_configs WHERE id = %s",
                (config_id,),
            )
            row = cursor.fetchone()

        return self._row_to_config(row) if row else None

    def get_subject(self, kind: SubjectKind, subject_id: str) -> Subject | None:
        """Resolve a subject; tests use the strategy of the prompt they belong to."""
        if kind == SubjectKind.PROMPT:
            query = "SELECT score_aggregation_strategy FROM prompts WHERE id = %s"
        else:
            query = """
                SELECT p.score_aggregation_strategy
                FROM prompt_tests t
                JOIN prompts p ON p.id = t.prompt_id
                WHERE t.id = %s
            """

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, (subject_id,))
            row = cursor.fetchone()

        if not row:
            return None
        return Subject(
            kind=kind,
            id=subject_id,
            aggregation_strategy=row[0] or AggregationStrategy.WEIGHTED_AVERAGE,
        )

    def _row_to_config(self, row: tuple) -> EvaluatorConfig:
        return EvaluatorConfig(
            id=str(row[0]),
            evaluator_key=row[1],
            subject_kind=row[2],
            subject_id=str(row[3]),
            config=_json_value(row[4], {}),
            priority=row[5],
            weight=row[6],
            enabled=row[7],
            run_mode=row[8],
            depends_on=row[9],
            min_dependency_score=row[10],
            created_at=row[11],
        )


class PostgresResponseRepository:
    """Reads tracked LLM responses."""

    def get(self, response_id: str) -> Response | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, rendered_prompt, response_text, prompt_id, created_at
                FROM llm_responses
                WHERE id = %s
                """,
                (response_id,),
            )
            row = cursor.fetchone()

        if not row:
            return None
        return Response(
            id=str(row[0]),
            rendered_prompt=row[1] or "",
            response_text=row[2],
            prompt_id=str(row[3]) if row[3] else None,
            created_at=row[4],
        )


EVALUATION_COLUMNS = """
    id, llm_response_id, evaluator_key, evaluator_type, evaluator_config_id,
    prompt_test_run_id, score, score_min, score_max, passed, feedback,
    criteria_scores, metadata, evaluation_context, created_at
"""


class PostgresEvaluationRepository:
    """Append-only evaluation storage."""

    def add(self, evaluation: Evaluation) -> Evaluation:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO evaluations ({EVALUATION_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    evaluation.id,
                    evaluation.response_id,
                    evaluation.evaluator_key,
                    evaluation.evaluator_type,
                    evaluation.evaluator_config_id,
                    evaluation.test_run_id,
                    evaluation.score,
                    evaluation.score_min,
                    evaluation.score_max,
                    evaluation.passed,
                    evaluation.feedback,
                    json.dumps(evaluation.criteria_scores),
                    json.dumps(evaluation.metadata, default=str),
                    evaluation.evaluation_context.value,
                    evaluation.created_at,
                ),
            )
            conn.commit()

        logger.debug(f"Stored evaluation {evaluation.id} ({evaluation.evaluator_key})")
        return evaluation

    def latest_for_key(
        self,
        response_id: str,
        evaluator_key: str,
        evaluation_context: EvaluationContext,
        test_run_id: str | None = None,
    ) -> Evaluation | None:
        conditions = ["llm_response_id = %s", "evaluator_key = %s", "evaluation_context = %s"]
        params: list[Any] = [response_id, evaluator_key, EvaluationContext(evaluation_context).value]
        if test_run_id is not None:
            conditions.append("prompt_test_run_id = %s")
            params.append(test_run_id)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {EVALUATION_COLUMNS}
                FROM evaluations
                WHERE {" AND ".join(conditions)}
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                tuple(params),
            )
            row = cursor.fetchone()

        return self._row_to_evaluation(row) if row else None

    def list_for_response(
        self,
        response_id: str,
        evaluation_context: EvaluationContext | None = None,
    ) -> list[Evaluation]:
        query = f"SELECT {EVALUATION_COLUMNS} FROM evaluations WHERE llm_response_id = %s"
        params: list[Any] = [response_id]
        if evaluation_context is not None:
            query += " AND evaluation_context = %s"
            params.append(EvaluationContext(evaluation_context).value)
        query += " ORDER BY created_at ASC, id ASC"

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, tuple(params))
            rows = cursor.fetchall()

        return [self._row_to_evaluation(row) for row in rows]

    def list_for_test_run(self, test_run_id: str) -> list[Evaluation]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {EVALUATION_COLUMNS}
                FROM evaluations
                WHERE prompt_test_run_id = %s
                ORDER BY created_at ASC, id ASC
                """,
                (test_run_id,),
            )
            rows = cursor.fetchall()

        return [self._row_to_evaluation(row) for row in rows]

    def _row_to_evaluation(self, row: tuple) -> Evaluation:
        return Evaluation(
            id=str(row[0]),
            response_id=str(row[1]),
            evaluator_key=row[2],
            evaluator_type=row[3],
            evaluator_config_id=str(row[4]) if row[4] else None,
            test_run_id=str(row[5]) if row[5] else None,
            score=row[6],
            score_min=row[7],
            score_max=row[8],
            passed=row[9],
            feedback=row[10],
            criteria_scores=_json_value(row[11], {}),
            metadata=_json_value(row[12], {}),
            evaluation_context=row[13],
            created_at=row[14],
        )


RUN_COLUMNS = """
    id, prompt_test_id, prompt_id, llm_response_id, status, passed,
    total_evaluators, passed_evaluators, failed_evaluators, skipped_evaluators,
    skipped_keys, pending_units, score, check_dependencies, aggregation_strategy,
    error_message, metadata, created_at, completed_at
"""


class PostgresRunLedger:
    """
    Test run ledger.

    Counter updates are single UPDATE statements so concurrent workers
    completing units of the same run never lose a decrement.
    """

    def create(self, run: PromptTestRun) -> PromptTestRun:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO prompt_test_runs ({RUN_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    run.id,
                    run.test_id,
                    run.prompt_id,
                    run.response_id,
                    run.status.value,
                    run.passed,
                    run.total_evaluators,
                    run.passed_evaluators,
                    run.failed_evaluators,
                    run.skipped_evaluators,
                    json.dumps(run.skipped_keys),
                    run.pending_units,
                    run.score,
                    run.check_dependencies,
                    run.aggregation_strategy.value,
                    run.error_message,
                    json.dumps(run.metadata, default=str),
                    run.created_at,
                    run.completed_at,
                ),
            )
            conn.commit()

        logger.info(f"[{run.id}] Created test run for test {run.test_id}")
        return run

    def get(self, test_run_id: str) -> PromptTestRun | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {RUN_COLUMNS} FROM prompt_test_runs WHERE id = %s",
                (test_run_id,),
            )
            row = cursor.fetchone()

        return self._row_to_run(row) if row else None

    def start(self, test_run_id: str) -> PromptTestRun | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE prompt_test_runs
                SET status = 'running'
                WHERE id = %s AND status = 'pending'
                RETURNING {RUN_COLUMNS}
                """,
                (test_run_id,),
            )
            row = cursor.fetchone()
            conn.commit()

        return self._row_to_run(row) if row else None

    def record_skips(self, test_run_id: str, evaluator_keys: list[str]) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE prompt_test_runs
                SET skipped_keys = COALESCE(skipped_keys, '[]'::jsonb) || %s::jsonb
                WHERE id = %s
                """,
                (json.dumps(evaluator_keys), test_run_id),
            )
            conn.commit()

    def register_units(self, test_run_id: str, count: int) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE prompt_test_runs
                SET pending_units = pending_units + %s
                WHERE id = %s
                """,
                (count, test_run_id),
            )
            conn.commit()

        logger.debug(f"[{test_run_id}] Registered {count} async unit(s)")

    def complete_unit(self, test_run_id: str, skipped_key: str | None = None) -> int:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            if skipped_key is None:
                cursor.execute(
                    """
                    UPDATE prompt_test_runs
                    SET pending_units = GREATEST(pending_units - 1, 0)
                    WHERE id = %s
                    RETURNING pending_units
                    """,
                    (test_run_id,),
                )
            else:
                cursor.execute(
                    """
                    UPDATE prompt_test_runs
                    SET pending_units = GREATEST(pending_units - 1, 0),
                        skipped_keys = COALESCE(skipped_keys, '[]'::jsonb) || jsonb_build_array(%s::text)
                    WHERE id = %s
                    RETURNING pending_units
                    """,
                    (skipped_key, test_run_id),
                )
            row = cursor.fetchone()
            conn.commit()

        return row[0] if row else 0

    def finish(self, test_run_id: str, summary: TestRunSummary) -> PromptTestRun | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE prompt_test_runs
                SET status = %s, passed = %s, score = %s,
                    total_evaluators = %s, passed_evaluators = %s,
                    failed_evaluators = %s, skipped_evaluators = %s,
                    completed_at = %s
                WHERE id = %s AND status = 'running'
                RETURNING {RUN_COLUMNS}
                """,
                (
                    summary.status.value,
                    summary.passed,
                    summary.score,
                    summary.total_evaluators,
                    summary.passed_evaluators,
                    summary.failed_evaluators,
                    summary.skipped_evaluators,
                    datetime.now(timezone.utc),
                    test_run_id,
                ),
            )
            row = cursor.fetchone()
            conn.commit()

        return self._row_to_run(row) if row else None

    def fail(self, test_run_id: str, error_message: str) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE prompt_test_runs
                SET status = 'error', passed = FALSE, error_message = %s, completed_at = %s
                WHERE id = %s AND status IN ('pending', 'running')
                """,
                (error_message, datetime.now(timezone.utc), test_run_id),
            )
            conn.commit()

        logger.error(f"[{test_run_id}] Test run marked as error: {error_message}")

    def _row_to_run(self, row: tuple) -> PromptTestRun:
        return PromptTestRun(
            id=str(row[0]),
            test_id=str(row[1]),
            prompt_id=str(row[2]) if row[2] else None,
            response_id=str(row[3]) if row[3] else None,
            status=TestRunStatus(row[4]),
            passed=row[5],
            total_evaluators=row[6] or 0,
            passed_evaluators=row[7] or 0,
            failed_evaluators=row[8] or 0,
            skipped_evaluators=row[9] or 0,
            skipped_keys=_json_value(row[10], []),
            pending_units=row[11] or 0,
            score=row[12],
            check_dependencies=row[13],
            aggregation_strategy=row[14] or AggregationStrategy.WEIGHTED_AVERAGE,
            error_message=row[15],
            metadata=_json_value(row[16], {}),
            created_at=row[17],
            completed_at=row[18],
        )
