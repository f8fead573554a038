#!/usr/bin/env python3
"""
Run migrations (same process, same DATABASE_URL), then uvicorn.
"""
import os
import sys

from alembic.config import Config
from alembic import command
from loguru import logger

from ticketbridge.core.config import settings
from ticketbridge.core.logging import configure_logging

configure_logging()

alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
logger.info("Running migrations")
command.upgrade(alembic_cfg, "head")

port = os.getenv("PORT", "8000")
os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "ticketbridge.main:app", "--host", "0.0.0.0", "--port", port],
)
