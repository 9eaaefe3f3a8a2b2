"""Startup cleanup utilities shared between FastAPI lifespan and Celery worker_init.

Centralises orphaned-job recovery and the expiry sweep so they are not
duplicated across entry points. Both the API server and the task worker
call ``cleanup_orphaned_jobs()`` on startup so pollers never wait on a job
that no process is running any more.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from createtree.schemas.common import JobStatus
from createtree.services.job_store import InvalidTransitionError, JobStore

logger = logging.getLogger(__name__)

ORPHANED_JOB_MESSAGE = (
    "Job was interrupted by a server restart. "
    "Please start a new generation."
)


def cleanup_orphaned_jobs(store: JobStore) -> int:
    """Mark any jobs still ``processing`` as failed.

    Returns the number of orphaned jobs cleaned up.
    """
    count = 0
    try:
        orphaned = store.list_active()
    except Exception as exc:
        logger.warning("Could not list active jobs: %s", exc)
        return 0

    for record in orphaned:
        logger.warning(
            "Marking orphaned %s job %s as failed on startup",
            record.kind.value, record.id[:8],
        )
        try:
            store.update(record.id, status=JobStatus.FAILED, error=ORPHANED_JOB_MESSAGE)
            count += 1
        except InvalidTransitionError:
            # finished between the listing and the write
            continue
    if count:
        logger.info("Cleaned up %d orphaned job(s)", count)
    return count


def purge_expired_jobs(store: JobStore, retention_days: int) -> int:
    """Delete finished job records older than *retention_days*."""
    if retention_days <= 0:
        return 0
    try:
        return store.purge_expired(timedelta(days=retention_days))
    except Exception as exc:
        logger.warning("Job expiry sweep failed: %s", exc)
        return 0
