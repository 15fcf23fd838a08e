from __future__ import annotations

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Root logger setup for the API process (alembic uses alembic.ini)."""
    logging.basicConfig(level=(level or LOG_LEVEL).upper(), format=LOG_FORMAT)
    # SQL echo is controlled separately; keep engine chatter out of app logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
