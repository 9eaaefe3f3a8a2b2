"""Background execution of generation jobs.

Two backends share one submission/cancel interface:

  - ``JobRunner``: each job is an ``asyncio.Task`` in the API process
  - ``CeleryJobDispatcher``: each job is a Celery task (``tasks.generation``)

Either way the job record is written before ``submit()`` returns, so the
id handed to the client can be polled immediately, and ``execute_job()``
is the single boundary that turns a pipeline's outcome into a terminal
status.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from createtree.schemas.common import JobKind
from createtree.services.generation_pipeline import ImageJobFailed, Pipeline, describe_failure
from createtree.services.job_store import (
    InvalidTransitionError,
    JobNotFoundError,
    JobRecord,
    JobStore,
    SqlJobStore,
)
from createtree.services.progress_tracker import JobCancelledError, ProgressTracker

logger = logging.getLogger(__name__)

CANCEL_REASON = "Cancelled by user"


class StepTimeoutError(RuntimeError):
    """A pipeline step timed out on its own, before the job deadline."""


async def _run_pipeline(pipeline: Pipeline, tracker: ProgressTracker, params: dict[str, Any]) -> dict[str, Any]:
    try:
        return await pipeline(tracker, params)
    except (asyncio.TimeoutError, TimeoutError) as exc:
        # Leaves wait_for's TimeoutError to the job deadline alone
        raise StepTimeoutError(str(exc) or "Operation timed out") from exc


async def execute_job(
    store: JobStore,
    job_id: str,
    pipeline: Pipeline,
    params: dict[str, Any],
    *,
    timeout: float | None = None,
    redis_url: str = "",
) -> None:
    """Run *pipeline* for *job_id* and record exactly one terminal status."""
    tracker = ProgressTracker(store, job_id, redis_url)
    try:
        if timeout:
            result = await asyncio.wait_for(_run_pipeline(pipeline, tracker, params), timeout)
        else:
            result = await _run_pipeline(pipeline, tracker, params)
    except JobCancelledError:
        logger.info("Job %s stopped after cancellation", job_id[:8])
        tracker.finish_cancelled(CANCEL_REASON)
    except asyncio.CancelledError:
        tracker.finish_cancelled(CANCEL_REASON)
        raise
    except asyncio.TimeoutError:
        logger.warning("Job %s exceeded %.0fs deadline", job_id[:8], timeout or 0)
        tracker.finish_failed(f"Generation timed out after {timeout or 0:.0f} seconds")
    except ImageJobFailed as exc:
        logger.warning("Image job %s finished without an image: %s", job_id[:8], exc)
        tracker.finish_failed(str(exc), result=exc.result)
    except Exception as exc:
        logger.exception("Job %s failed: %s", job_id[:8], exc)
        tracker.finish_failed(describe_failure(exc))
    else:
        tracker.finish_completed(result)
        logger.info("Job %s completed", job_id[:8])


class JobDispatcher:
    def __init__(self, store: JobStore, *, redis_url: str = ""):
        self.store = store
        self.redis_url = redis_url

    def submit(self, kind: JobKind, params: dict[str, Any]) -> JobRecord:
        raise NotImplementedError

    def cancel(self, job_id: str) -> JobRecord:
        """Mark *job_id* cancelled and stop its work.

        Raises JobNotFoundError for unknown ids and InvalidTransitionError
        when the job already finished.
        """
        record = self.store.read(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        if record.is_terminal:
            raise InvalidTransitionError(job_id, record.status)

        tracker = ProgressTracker(self.store, job_id, self.redis_url)
        if not tracker.finish_cancelled(CANCEL_REASON):
            current = self.store.read(job_id)
            raise InvalidTransitionError(job_id, current.status if current else record.status)

        self._stop(job_id)
        logger.info("Job %s cancelled", job_id[:8])
        return self.store.read(job_id) or record

    def _stop(self, job_id: str) -> None:
        pass

    async def shutdown(self) -> None:
        pass


# ── In-process backend ─────────────────────────────────────────────────


class JobRunner(JobDispatcher):
    """Runs each job as an asyncio task on the current event loop."""

    def __init__(
        self,
        store: JobStore,
        pipelines: dict[JobKind, Pipeline],
        *,
        timeout: float | None = None,
        redis_url: str = "",
    ):
        super().__init__(store, redis_url=redis_url)
        self.pipelines = pipelines
        self.timeout = timeout
        self._tasks: dict[str, asyncio.Task] = {}

    def submit(self, kind: JobKind, params: dict[str, Any]) -> JobRecord:
        """Create the job record and schedule its pipeline. Must be called on a running loop."""
        pipeline = self.pipelines[kind]
        record = self.store.create(kind, params)
        task = asyncio.get_running_loop().create_task(
            execute_job(
                self.store, record.id, pipeline, record.params,
                timeout=self.timeout, redis_url=self.redis_url,
            ),
            name=f"job-{record.id}",
        )
        self._tasks[record.id] = task
        task.add_done_callback(lambda _t, job_id=record.id: self._tasks.pop(job_id, None))
        logger.info("Scheduled %s job %s", kind.value, record.id[:8])
        return record

    def task_for(self, job_id: str) -> asyncio.Task | None:
        return self._tasks.get(job_id)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def _stop(self, job_id: str) -> None:
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()

    async def shutdown(self) -> None:
        """Fail and cancel every job still running in this process."""
        tasks = list(self._tasks.items())
        for job_id, task in tasks:
            ProgressTracker(self.store, job_id, self.redis_url).finish_failed(
                "Interrupted by server shutdown"
            )
            task.cancel()
        if tasks:
            await asyncio.gather(*(t for _, t in tasks), return_exceptions=True)
            logger.info("Stopped %d running job(s)", len(tasks))


# ── Celery backend ─────────────────────────────────────────────────────


class CeleryJobDispatcher(JobDispatcher):
    """Hands jobs to Celery workers. The Celery task id equals the job id."""

    def submit(self, kind: JobKind, params: dict[str, Any]) -> JobRecord:
        from createtree.tasks.generation import run_job

        record = self.store.create(kind, params)
        run_job.apply_async(args=[record.id, kind.value, record.params], task_id=record.id)
        if isinstance(self.store, SqlJobStore):
            self.store.set_celery_task_id(record.id, record.id)
        logger.info("Queued %s job %s on Celery", kind.value, record.id[:8])
        return record

    def _stop(self, job_id: str) -> None:
        from createtree.celery_app import celery_app

        celery_app.control.revoke(job_id, terminate=True)


def build_job_runner(settings, store: JobStore, pipelines: dict[JobKind, Pipeline]) -> JobDispatcher:
    """Instantiate the backend selected by ``settings.JOB_BACKEND``."""
    if settings.JOB_BACKEND == "celery":
        return CeleryJobDispatcher(store, redis_url=settings.REDIS_URL)
    if settings.JOB_BACKEND != "inprocess":
        logger.warning("Unknown JOB_BACKEND %r, running jobs in-process", settings.JOB_BACKEND)
    return JobRunner(
        store,
        pipelines,
        timeout=settings.JOB_TIMEOUT_SECONDS,
        redis_url=settings.REDIS_URL,
    )
