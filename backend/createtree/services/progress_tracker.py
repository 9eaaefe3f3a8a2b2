"""Per-job progress reporting for background generation tasks.

Provides a single ``ProgressTracker`` interface that persists snapshots to
the job store (for polling clients) and, when Redis is configured,
broadcasts them over pub/sub (for live WebSocket updates). Pipelines report
through this instead of touching the store directly, and it doubles as the
cancellation token checked at each suspension point.
"""
from __future__ import annotations

import json
import logging
from typing import Any

import redis

from createtree.schemas.common import JobStatus
from createtree.services.job_store import (
    InvalidTransitionError,
    JobNotFoundError,
    JobRecord,
    JobStore,
)

logger = logging.getLogger(__name__)


class JobCancelledError(Exception):
    """Raised inside a pipeline once its job has been cancelled."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} was cancelled")
        self.job_id = job_id


def status_payload(record: JobRecord) -> dict[str, Any]:
    """Flatten a job record into the wire shape used by pollers and sockets."""
    payload: dict[str, Any] = {
        "jobId": record.id,
        "kind": record.kind.value,
        "status": record.status.value,
        "progress": record.progress,
        "message": record.error if record.error else record.message,
        "updatedAt": record.updated_at.isoformat(),
    }
    result = record.result or {}
    for key, wire in (
        ("audio_url", "audioUrl"),
        ("image_url", "imageUrl"),
        ("title", "title"),
        ("lyrics", "lyrics"),
        ("duration", "duration"),
        ("cover_image_url", "coverImageUrl"),
        ("outcome", "outcome"),
    ):
        if result.get(key) is not None:
            payload[wire] = result[key]
    return {k: v for k, v in payload.items() if v is not None}


class ProgressTracker:
    """Single writer for one job's status record.

    Primary: the job store (read by the status endpoint).
    Secondary: Redis pub/sub channel ``job:{job_id}`` for live delivery.
    """

    def __init__(self, store: JobStore, job_id: str, redis_url: str = ""):
        self.store = store
        self.job_id = job_id
        self._redis: redis.Redis | None = None
        self._redis_url = redis_url

    # ── Redis connection (lazy, tolerant of failure) ───────────────────

    @property
    def redis_client(self) -> redis.Redis | None:
        if self._redis is None and self._redis_url:
            try:
                self._redis = redis.from_url(self._redis_url)
            except Exception:
                logger.warning("Could not connect to Redis for progress updates")
        return self._redis

    # ── Public API ─────────────────────────────────────────────────────

    def update(self, message: str, percentage: int) -> None:
        """Record a progress step. Raises JobCancelledError if cancelled."""
        record = self._write(progress=percentage, message=message)
        self._publish_redis(record)
        logger.info("Job %s: %s (%d%%)", self.job_id[:8], message, percentage)

    def is_cancelled(self) -> bool:
        try:
            record = self.store.read(self.job_id)
        except Exception:
            return False
        return record is not None and record.status is JobStatus.CANCELLED

    def check_cancelled(self) -> None:
        if self.is_cancelled():
            raise JobCancelledError(self.job_id)

    def finish_completed(self, result: dict[str, Any], message: str = "Generation completed") -> None:
        try:
            record = self.store.update(
                self.job_id,
                status=JobStatus.COMPLETED,
                progress=100,
                message=message,
                result=result,
            )
        except InvalidTransitionError as exc:
            logger.info("Job %s finished after reaching %s; result dropped",
                        self.job_id[:8], exc.current.value)
            return
        self._publish_redis(record)

    def finish_failed(self, error_msg: str, result: dict[str, Any] | None = None) -> None:
        patch: dict[str, Any] = {"status": JobStatus.FAILED, "error": error_msg}
        if result is not None:
            patch["result"] = result
        try:
            record = self.store.update(self.job_id, **patch)
        except (InvalidTransitionError, JobNotFoundError) as exc:
            logger.info("Could not mark job %s failed: %s", self.job_id[:8], exc)
            return
        self._publish_redis(record)

    def finish_cancelled(self, reason: str = "Cancelled by user") -> bool:
        """Record cancellation. Returns False if the job was already terminal."""
        try:
            record = self.store.update(
                self.job_id, status=JobStatus.CANCELLED, error=reason, message=reason,
            )
        except InvalidTransitionError:
            return False
        self._publish_redis(record)
        return True

    # ── Internal helpers ───────────────────────────────────────────────

    def _write(self, **patch: Any) -> JobRecord:
        try:
            return self.store.update(self.job_id, **patch)
        except InvalidTransitionError as exc:
            if exc.current is JobStatus.CANCELLED:
                raise JobCancelledError(self.job_id) from exc
            raise

    def _publish_redis(self, record: JobRecord) -> None:
        try:
            rc = self.redis_client
            if rc:
                rc.publish(f"job:{self.job_id}", json.dumps(status_payload(record)))
        except Exception:
            pass
