#!/usr/bin/env python3
"""Start the HTTP API under uvicorn."""

import logging

import uvicorn

from archive_ingest.core.config import get_settings
from archive_ingest.core.logging import configure_logging

logger = logging.getLogger("archive_ingest.server")


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        f"Starting API on {settings.api_host}:{settings.api_port} "
        f"with {settings.api_workers} worker(s)"
    )
    uvicorn.run(
        "archive_ingest.main:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )


if __name__ == '__main__':
    main()
