import sys

from loguru import logger

from ticketbridge.core.config import settings


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    """Single stderr sink for the API process and the Celery worker."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or settings.LOG_LEVEL).upper(),
        serialize=settings.LOG_JSON if json is None else json,
        backtrace=False,
        diagnose=False,
    )
