"""
Centralized logging configuration for prompt-tracker.
Routes the API, worker and library loggers through loguru.
"""

import logging
import sys
from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# Libraries that install their own handlers
NOISY_LOGGERS = ["uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "celery", "httpx"]


class InterceptHandler(logging.Handler):
    """
    Forwards standard library log records to loguru.
    See: https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", colorize: bool = True):
    """
    Configures loguru as the only sink and intercepts standard library logging.

    Args:
        level: Minimum level written to stdout.
        colorize: Whether to emit ANSI colors (workers usually log without).
    """
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level, colorize=colorize)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in NOISY_LOGGERS:
        _logger = logging.getLogger(name)
        _logger.handlers = [InterceptHandler()]
        _logger.propagate = False

    logger.info(f"Logging initialized with Loguru (level={level}).")
