#!/usr/bin/env python
"""Bring the recommendations schema up to date before the API starts."""

import logging
import sys

from alembic import command
from alembic.config import Config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def run_migrations(config_path: str = "alembic.ini", revision: str = "head") -> bool:
    """Upgrade to ``revision``. Returns False and logs the error on failure."""
    try:
        logger.info(f"Upgrading recommendations schema to {revision}")
        command.upgrade(Config(config_path), revision)
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        return False
    logger.info("Schema is up to date")
    return True


if __name__ == "__main__":
    sys.exit(0 if run_migrations(*sys.argv[1:2]) else 1)
