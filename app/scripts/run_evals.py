"""
Run offline evaluations against a dataset.

Responses are read from a JSONL file (one response per line) and scored
against evaluator configs read from a JSON list, using in-memory stores
and the in-process dispatcher.

Usage:
    python -m app.scripts.run_evals --responses evals/data/responses.jsonl \
        --configs evals/data/configs.json --strategy weighted_average
"""

import argparse
import json
import sys

from loguru import logger

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
from prompt_tracker_core.domain.models import (
    AggregationStrategy,
    EvaluatorConfig,
    Response,
    Subject,
    SubjectKind,
)
from prompt_tracker_core.evals.registry import EvaluatorRegistry
from prompt_tracker_core.infrastructure.openai_client import OpenAIJudgeClient
from prompt_tracker_core.logging import setup_logging
from prompt_tracker_core.runtime.errors import ServiceError
from prompt_tracker_core.runtime.retry import RetryPolicy

OFFLINE_PROMPT_ID = "offline"


def load_responses(path: str) -> list[Response]:
    responses = []
    with open(path, "r") as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            record = json.loads(line)
            record.setdefault("id", f"line-{line_number}")
            record["prompt_id"] = OFFLINE_PROMPT_ID
            responses.append(Response.model_validate(record))
    return responses


def load_configs(path: str) -> list[EvaluatorConfig]:
    with open(path, "r") as f:
        records = json.load(f)
    return [
        EvaluatorConfig.model_validate(
            {**record, "subject_kind": SubjectKind.PROMPT, "subject_id": OFFLINE_PROMPT_ID}
        )
        for record in records
    ]


def build_orchestrator(configs: MemoryConfigRepository, responses: MemoryResponseRepository):
    evaluations = MemoryEvaluationRepository()
    ledger = MemoryRunLedger()
    registry = EvaluatorRegistry(judge_client=OpenAIJudgeClient())
    runner = AsyncUnitRunner(
        responses=responses,
        configs=configs,
        evaluations=evaluations,
        registry=registry,
        ledger=ledger,
        retry_policy=RetryPolicy.for_async_evaluations(),
    )
    return EvaluationOrchestrator(
        config_loader=ConfigLoader(configs, registry),
        responses=responses,
        evaluations=evaluations,
        ledger=ledger,
        dispatcher=LocalDispatcher(runner),
        configs=configs,
    )


def run_evals(responses_path: str, configs_path: str, strategy: str, check_dependencies: bool) -> int:
    print(f"Loading responses from {responses_path} and configs from {configs_path}...")

    try:
        responses = load_responses(responses_path)
        configs = load_configs(configs_path)
    except FileNotFoundError as e:
        print(f"File not found: {e.filename}")
        return 1

    config_repo = MemoryConfigRepository(configs)
    subject = config_repo.add_subject(Subject.prompt(OFFLINE_PROMPT_ID, strategy))
    response_repo = MemoryResponseRepository(responses)
    orchestrator = build_orchestrator(config_repo, response_repo)

    runs_passed = 0
    for response in responses:
        try:
            summary = orchestrator.evaluate(
                response, subject, check_dependencies=check_dependencies
            )
        except ServiceError as e:
            print(f"ERROR | Response: {response.id} | {e}")
            continue

        for evaluation in orchestrator.evaluations.list_for_response(response.id):
            status = "PASS" if evaluation.passed else "FAIL"
            print(
                f"{status} | Response: {response.id} | Evaluator: {evaluation.evaluator_key:<14} "
                f"| Score: {evaluation.score} | {evaluation.feedback}"
            )
        for key in summary.skipped_keys:
            print(f"SKIP | Response: {response.id} | Evaluator: {key:<14} | dependency not met")

        score = f"{summary.score:.3f}" if summary.score is not None else "n/a"
        print(f"==> {response.id}: {summary.status.value.upper()} (score={score}, strategy={summary.strategy.value})")
        runs_passed += int(summary.passed)

    total = len(responses)
    print("-" * 50)
    if total:
        print(f"Run Complete. Passed: {runs_passed}/{total} ({runs_passed / total * 100:.1f}%)")
    else:
        print("Run Complete. No responses evaluated.")
    return 0 if runs_passed == total else 2


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--responses", required=True, help="Path to JSONL file of responses")
    parser.add_argument("--configs", required=True, help="Path to JSON list of evaluator configs")
    parser.add_argument(
        "--strategy",
        default=AggregationStrategy.WEIGHTED_AVERAGE.value,
        choices=[s.value for s in AggregationStrategy],
        help="Score aggregation strategy",
    )
    parser.add_argument(
        "--no-dependencies",
        action="store_true",
        help="Ignore depends_on gates",
    )
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    setup_logging(level=args.log_level)
    logger.debug(f"Offline evaluation started with {args}")
    sys.exit(run_evals(args.responses, args.configs, args.strategy, not args.no_dependencies))
