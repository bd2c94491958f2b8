#!/usr/bin/env python3
"""Start the maintenance Celery worker with an embedded beat scheduler."""

import sys
import warnings

from celery.bin import worker

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from archive_ingest.core.logging import configure_logging
from archive_ingest.workers.celery_app import celery_app

if __name__ == '__main__':
    configure_logging()
    worker_app = worker.worker(app=celery_app)

    sys.argv = [
        'celery',
        '-A', 'archive_ingest.workers.celery_app.celery_app',
        'worker',
        '--beat',
        '--loglevel=info',
        '--queues=maintenance',
        '--pool=solo',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:]

    worker_app.run()
