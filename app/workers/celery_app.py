"""
Celery application configuration.

This module configures the Celery app with Redis as broker and backend.
"""

from celery import Celery
from loguru import logger

from prompt_tracker_core.config import settings

# Create Celery app
celery_app = Celery(
    "prompt_tracker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.tasks",
    ],
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task tracking
    task_track_started=True,
    task_acks_late=True,  # Acknowledge after task completes (for reliability)
    # Results
    result_expires=3600,  # Results expire after 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,  # Judge calls are slow; fetch one unit at a time
    worker_concurrency=settings.CELERY_WORKER_CONCURRENCY,
)

logger.info(f"Celery app configured with broker: {settings.CELERY_BROKER_URL}")
