"""Celery application for periodic batch maintenance."""

import ssl

from celery import Celery

from archive_ingest.core.config import get_settings

settings = get_settings()

broker_url = settings.celery_broker_url or settings.redis_url
backend_url = settings.celery_result_url or settings.redis_url

# Convert redis:// to rediss:// for Upstash domains to enable SSL
if ".upstash.io" in broker_url and broker_url.startswith("redis://"):
    broker_url = broker_url.replace("redis://", "rediss://", 1)
if ".upstash.io" in backend_url and backend_url.startswith("redis://"):
    backend_url = backend_url.replace("redis://", "rediss://", 1)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

celery_app = Celery(
    "archive_ingest",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,  # Re-queue if worker dies
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    "task_time_limit": 900,
    "task_soft_time_limit": 840,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "task_default_queue": "maintenance",
    "task_routes": {
        "archive_ingest.workers.tasks.reconcile_batches": {"queue": "maintenance"},
        "archive_ingest.workers.tasks.recover_stalled": {"queue": "maintenance"},
    },
    # Both tasks are idempotent, so overlapping beats are harmless
    "beat_schedule": {
        "reconcile-open-batches": {
            "task": "archive_ingest.workers.tasks.reconcile_batches",
            "schedule": float(settings.reconcile_interval_seconds),
        },
        "recover-stalled-files": {
            "task": "archive_ingest.workers.tasks.recover_stalled",
            "schedule": float(settings.reconcile_interval_seconds),
        },
    },
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict

celery_app.conf.update(celery_config)

# Explicitly import tasks to ensure they're registered with celery_app
from archive_ingest.workers.tasks import maintenance  # noqa: E402,F401
