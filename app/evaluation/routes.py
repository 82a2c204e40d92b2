"""
Evaluation module routes.

This module provides the API endpoints for the evaluation engine, including:
- Evaluating tracked responses and re-running a single evaluator
- Recording human evaluations
- Starting and reading prompt test runs
- Listing registered evaluators
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from loguru import logger

from app.evaluation import factory
from app.evaluation.schemas import (
    EvaluateResponseResult,
    EvaluationResponse,
    EvaluatorInfoResponse,
    HumanEvaluationRequest,
    SummaryResponse,
    TestRunRequest,
    TestRunResponse,
)
from app.evaluation.services.aggregator import score_statistics
from app.workers.tasks import evaluate_tracked_response, run_test_evaluations
from prompt_tracker_core.domain.exceptions import ConfigurationError, InvalidScoreError
from prompt_tracker_core.domain.models import EvaluationContext
from prompt_tracker_core.runtime.errors import ErrorCode, RetryableError, ServiceError

router = APIRouter(tags=["evaluation"])


def _http_error(e: ServiceError) -> HTTPException:
    """Map a service error onto an HTTP status."""
    if e.code == ErrorCode.NOT_FOUND:
        status_code = 404
    elif isinstance(e, (ConfigurationError, InvalidScoreError)):
        status_code = 422
    elif isinstance(e, RetryableError):
        status_code = 503
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=e.to_dict())


# ==============================================================================
# EVALUATORS
# ==============================================================================


@router.get(
    "/evaluators",
    response_model=list[EvaluatorInfoResponse],
    summary="List registered evaluators",
)
async def list_evaluators():
    """List every evaluator key with its description and default config."""
    registry = factory.get_evaluator_registry()
    return [EvaluatorInfoResponse(**info.to_dict()) for info in registry.list_evaluators()]


# ==============================================================================
# RESPONSE EVALUATION
# ==============================================================================


@router.post(
    "/responses/{response_id}/evaluate",
    response_model=EvaluateResponseResult,
    summary="Evaluate a tracked response",
)
def evaluate_response(
    response_id: str,
    use_async: bool = Query(True, description="Process via Celery"),
    check_dependencies: bool = Query(True, description="Skip evaluators whose dependency is unmet"),
):
    """
    Run the prompt's evaluators against a tracked response.

    If use_async=True (default), returns a task id for tracking.
    """
    if use_async:
        task = evaluate_tracked_response.delay(
            response_id=response_id, check_dependencies=check_dependencies
        )
        return EvaluateResponseResult(response_id=response_id, status="queued", task_id=task.id)

    orchestrator = factory.get_evaluation_orchestrator()
    try:
        summary = orchestrator.evaluate_tracked_response(
            response_id, check_dependencies=check_dependencies
        )
    except ServiceError as e:
        logger.error(f"Evaluation of response {response_id} failed: {e}")
        raise _http_error(e)

    if summary is None:
        raise HTTPException(status_code=404, detail=f"Response {response_id} has no prompt to evaluate")
    return EvaluateResponseResult(
        response_id=response_id,
        status=summary.status.value,
        summary=SummaryResponse.from_summary(summary),
    )


@router.post(
    "/responses/{response_id}/evaluator-configs/{config_id}/run",
    response_model=EvaluationResponse,
    summary="Re-run a single evaluator",
)
def run_single_evaluator(response_id: str, config_id: str):
    """Run one evaluator config against a response, without dependency checks."""
    response = factory.get_response_repository().get(response_id)
    if response is None:
        raise HTTPException(status_code=404, detail=f"Response {response_id} not found")
    config = factory.get_config_repository().get(config_id)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Evaluator config {config_id} not found")

    try:
        evaluation = factory.get_evaluation_orchestrator().evaluate_one(response, config)
    except ServiceError as e:
        logger.error(f"Single evaluator run {config_id} on {response_id} failed: {e}")
        raise _http_error(e)
    return EvaluationResponse.from_evaluation(evaluation)


@router.post(
    "/responses/{response_id}/human-evaluations",
    response_model=EvaluationResponse,
    status_code=201,
    summary="Record a human evaluation",
)
def create_human_evaluation(response_id: str, request: HumanEvaluationRequest):
    """Record a reviewer's score for a response."""
    if factory.get_response_repository().get(response_id) is None:
        raise HTTPException(status_code=404, detail=f"Response {response_id} not found")

    try:
        evaluation = factory.get_evaluation_service().record_human(
            response_id,
            request.score,
            score_min=request.score_min,
            score_max=request.score_max,
            passed=request.passed,
            feedback=request.feedback,
            criteria_scores=request.criteria_scores,
            evaluator_key=request.evaluator_key,
            evaluator_id=request.evaluator_id,
        )
    except ServiceError as e:
        raise _http_error(e)
    return EvaluationResponse.from_evaluation(evaluation)


@router.get(
    "/responses/{response_id}/evaluations",
    response_model=list[EvaluationResponse],
    summary="List evaluations of a response",
)
def list_response_evaluations(
    response_id: str,
    context: EvaluationContext | None = Query(None, description="Filter by evaluation context"),
):
    """List a response's evaluations in creation order."""
    evaluations = factory.get_evaluation_repository().list_for_response(response_id, context)
    return [EvaluationResponse.from_evaluation(e) for e in evaluations]


# ==============================================================================
# TEST RUNS
# ==============================================================================


@router.post(
    "/test-runs",
    response_model=TestRunResponse,
    status_code=201,
    summary="Start a prompt test run",
)
def create_test_run(request: TestRunRequest):
    """
    Create a test run and execute it.

    If use_async=True (default), the run is executed by a Celery worker
    and its status can be polled.
    """
    orchestrator = factory.get_evaluation_orchestrator()
    run = orchestrator.create_test_run(
        request.test_id, request.response_id, check_dependencies=request.check_dependencies
    )

    task_id = None
    if request.use_async:
        task = run_test_evaluations.delay(test_run_id=run.id)
        task_id = task.id
    else:
        try:
            orchestrator.run_test(run.id)
        except ServiceError as e:
            logger.error(f"[{run.id}] Inline test run failed: {e}")

    return _test_run_response(run.id, task_id=task_id)


@router.get(
    "/test-runs/{test_run_id}",
    response_model=TestRunResponse,
    summary="Get a test run",
)
def get_test_run(test_run_id: str):
    """Get a test run with its evaluations and score statistics."""
    return _test_run_response(test_run_id)


def _test_run_response(test_run_id: str, task_id: str | None = None) -> TestRunResponse:
    run = factory.get_run_ledger().get(test_run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Test run {test_run_id} not found")
    evaluations = factory.get_evaluation_repository().list_for_test_run(test_run_id)
    return TestRunResponse.from_run(
        run, evaluations, statistics=score_statistics(evaluations), task_id=task_id
    )
