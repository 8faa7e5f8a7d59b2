"""Process-wide logging setup for the Celery worker and the HTTP service."""

import logging
from typing import Optional

from oonjai.core.config import settings

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "urllib3", "celery.redirected")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once and quiet third-party noise."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
