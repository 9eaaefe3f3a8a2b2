"""Celery tasks for background music and image generation.

Exposes ``run_job`` (one generation job) and ``purge_expired_jobs`` (the
beat-driven expiry sweep). The pipelines are async, so each task runs its
own short-lived event loop (``asyncio.run``) to bridge sync Celery with
async service code.
"""
from __future__ import annotations

import asyncio
import logging

from createtree.celery_app import celery_app, settings
from createtree.database import SessionLocal
from createtree.schemas.common import JobKind
from createtree.services.generation_pipeline import build_pipelines
from createtree.services.image_orchestrator import ImageTransformOrchestrator
from createtree.services.job_runner import execute_job
from createtree.services.job_store import build_job_store
from createtree.services.suno_automation import SunoAutomation
from createtree.utils import startup

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="generation.run_job")
def run_job(self, job_id: str, kind: str, params: dict):
    """Execute one generation job; the terminal status is written to the job store."""
    store = build_job_store(settings)
    pipelines = build_pipelines(
        generator=SunoAutomation.from_settings(settings),
        orchestrator=ImageTransformOrchestrator.from_settings(settings),
        session_factory=SessionLocal,
    )
    logger.info("Worker %s picked up %s job %s", self.request.hostname, kind, job_id[:8])
    asyncio.run(execute_job(
        store,
        job_id,
        pipelines[JobKind(kind)],
        params,
        timeout=settings.JOB_TIMEOUT_SECONDS,
        redis_url=settings.REDIS_URL,
    ))
    record = store.read(job_id)
    return {"job_id": job_id, "status": record.status.value if record else None}


@celery_app.task(name="generation.purge_expired_jobs")
def purge_expired_jobs():
    removed = startup.purge_expired_jobs(build_job_store(settings), settings.JOB_RETENTION_DAYS)
    return {"removed": removed}
