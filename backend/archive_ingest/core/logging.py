"""Process-wide logging setup for the API and the Celery worker."""

from __future__ import annotations

import logging
import sys

from archive_ingest.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Attach a stdout handler to the package logger once."""
    global _configured
    if _configured:
        return

    level = (level or get_settings().log_level).upper()
    package_logger = logging.getLogger("archive_ingest")
    package_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    package_logger.addHandler(handler)

    _configured = True
