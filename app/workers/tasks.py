"""
Celery task definitions for evaluation work.

- run_test_evaluations: executes a whole test run
- evaluate_tracked_response: evaluates a production call once it is tracked
- run_async_evaluation: executes one async evaluator unit
"""

from loguru import logger

from app.evaluation import factory
from app.evaluation.services.async_units import AsyncUnit, UnitOutcome
from app.workers.celery_app import celery_app
from app.workers.decorators import track_async_unit
from prompt_tracker_core.config import settings
from prompt_tracker_core.runtime.errors import ServiceError


@celery_app.task(
    bind=True,
    name="app.workers.tasks.run_test_evaluations",
    time_limit=600,
    soft_time_limit=540,
)
def run_test_evaluations(self, test_run_id: str, check_dependencies: bool | None = None) -> dict:
    """
    Celery task to execute a prompt test run.

    The sync evaluators run inside this task; async evaluators are
    enqueued as run_async_evaluation tasks and finalize the run when the
    last one finishes.

    Args:
        self: Celery task instance.
        test_run_id: Run to execute.
        check_dependencies: Overrides the dependency switch stored on the run.

    Returns:
        dict: Run status and, when it ran, the summary so far.
    """
    logger.info(f"[{test_run_id}] Starting test run task")
    orchestrator = factory.get_evaluation_orchestrator()

    try:
        summary = orchestrator.run_test(test_run_id, check_dependencies=check_dependencies)
    except ServiceError as e:
        # The run has already been marked as error by the orchestrator
        return {"status": "error", "test_run_id": test_run_id, "error": e.to_dict()}

    if summary is None:
        return {"status": "skipped", "test_run_id": test_run_id}

    return {
        "status": summary.status.value,
        "test_run_id": test_run_id,
        "summary": summary.model_dump(mode="json"),
    }


@celery_app.task(
    bind=True,
    name="app.workers.tasks.evaluate_tracked_response",
)
def evaluate_tracked_response(self, response_id: str, check_dependencies: bool = True) -> dict:
    """
    Celery task to evaluate a tracked production response.

    Args:
        self: Celery task instance.
        response_id: Response to evaluate against its prompt's configs.
        check_dependencies: When False, depends_on gates are ignored.

    Returns:
        dict: Summary of the sync evaluators; async ones are enqueued.
    """
    logger.info(f"Evaluating tracked response {response_id}")
    summary = factory.get_evaluation_orchestrator().evaluate_tracked_response(
        response_id, check_dependencies=check_dependencies
    )
    if summary is None:
        return {"status": "skipped", "response_id": response_id}
    return {
        "status": summary.status.value,
        "response_id": response_id,
        "summary": summary.model_dump(mode="json"),
    }


@celery_app.task(
    bind=True,
    name="app.workers.tasks.run_async_evaluation",
    max_retries=settings.ASYNC_EVALUATION_MAX_RETRIES,
    acks_late=True,
)
@track_async_unit(unit_arg="unit")
def run_async_evaluation(self, unit: dict) -> UnitOutcome:
    """
    Celery task to run one async evaluator against one response.

    Args:
        self: Celery task instance (for retries).
        unit: Serialized AsyncUnit.

    Returns:
        UnitOutcome (serialized by track_async_unit).
    """
    runner = factory.get_async_unit_runner()
    return runner.run(AsyncUnit.model_validate(unit), retry=False)
