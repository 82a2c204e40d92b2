"""
PostgreSQL connection helper for prompt-tracker.

Repositories open one short-lived connection per operation and commit
before returning, so a committed Evaluation is immediately visible to
dependency checks running in other workers.
"""

import psycopg
from loguru import logger

from prompt_tracker_core.config import settings


def get_db_connection():
    """
    Get a PostgreSQL database connection.

    Usage:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM evaluations WHERE response_id = %s", (response_id,))

    Returns:
        psycopg.Connection: A PostgreSQL connection (closed when the `with` block exits).
    """
    try:
        conn = psycopg.connect(settings.POSTGRES_DSN)
        logger.debug("Connected to PostgreSQL")
        return conn
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise
