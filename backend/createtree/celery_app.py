"""Celery application and worker configuration.

Defines the shared Celery instance used when ``JOB_BACKEND=celery``, along
with the beat schedule for the job expiry sweep and serialisation
settings. A ``worker_init`` signal hook marks jobs orphaned by a previous
worker as failed.
"""
import logging
from celery import Celery
from celery.signals import worker_init
from createtree.config import get_settings

settings = get_settings()

celery_app = Celery(
    "createtree_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["createtree.tasks.generation"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=False,           # ACK immediately to prevent ghost re-delivery on restart
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    broker_connection_retry_on_startup=True,
    beat_schedule={
        "purge-expired-jobs": {
            "task": "generation.purge_expired_jobs",
            "schedule": float(settings.JOB_SWEEP_INTERVAL_SECONDS),
        },
    },
)


@worker_init.connect
def setup_worker(**kwargs):
    """Run once when the Celery worker process starts.

    - Purge stale tasks left in the broker queue so they don't replay.
    - Mark orphaned jobs (still ``processing``) as failed.
    - Suppress noisy HTTP loggers.
    """
    log = logging.getLogger(__name__)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    try:
        purged = celery_app.control.purge()
        if purged:
            log.warning("Purged %d stale task(s) from broker queue on startup", purged)
    except Exception as exc:
        log.warning("Could not purge broker queue: %s", exc)

    from createtree.database import create_tables
    from createtree.services.job_store import build_job_store
    from createtree.utils.startup import cleanup_orphaned_jobs

    create_tables()
    cleanup_orphaned_jobs(build_job_store(settings))
