from __future__ import annotations

import logging
import os

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def run_upgrade(revision: str = "head") -> None:
    config = Config(ALEMBIC_CONFIG)
    logger.info("upgrading schema to %s", revision)
    command.upgrade(config, revision)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_upgrade()
