"""Periodic Celery tasks: batch reconciliation and stall recovery."""

from __future__ import annotations

import logging

from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db import session as db_session
from archive_ingest.services import aggregator, work_queue
from archive_ingest.services.progress_tracker import publish_batch_progress
from archive_ingest.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="archive_ingest.workers.tasks.reconcile_batches")
def reconcile_batches_task() -> list[str]:
    """Recompute counters and roll up status for every open batch."""
    policy = IngestPolicy.from_settings()
    session = db_session.get_fresh_session()
    try:
        batches = aggregator.reconcile_open_batches(session, policy)
        session.commit()
        for batch in batches:
            publish_batch_progress(batch)
        logger.info(f"Reconciled {len(batches)} open batch(es)")
        return [batch.id for batch in batches]
    except Exception:
        session.rollback()
        logger.error("Batch reconciliation failed", exc_info=True)
        raise
    finally:
        session.close()


@celery_app.task(name="archive_ingest.workers.tasks.recover_stalled")
def recover_stalled_task() -> list[int]:
    """Apply the configured stall policy to PROCESSING files with no progress."""
    policy = IngestPolicy.from_settings()
    session = db_session.get_fresh_session()
    try:
        handled = work_queue.recover_stalled(session, policy)
        session.commit()
        if handled:
            logger.warning(
                f"{len(handled)} stalled file(s) handled with policy {policy.stall_recovery}"
            )
        return [record.id for record in handled]
    except Exception:
        session.rollback()
        logger.error("Stall recovery failed", exc_info=True)
        raise
    finally:
        session.close()
