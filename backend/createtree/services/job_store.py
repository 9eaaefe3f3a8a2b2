"""Job status records and the stores that persist them.

A job record is written once when a generation request is accepted and is
then mutated only by the background task performing the work (plus an
explicit cancel). Two interchangeable backends are provided:

  - ``FileJobStore``: one JSON file per job in a directory
  - ``SqlJobStore``: the ``generation_jobs`` table

Both enforce the one-way status lifecycle: ``processing`` may move to any
terminal status, and a terminal record rejects every further write. Writes
to one job are serialized (a per-job lock for files, a conditional UPDATE
for the table) so a cancel cannot be overwritten by a concurrent progress
write that read the record earlier.
Reads never mutate anything, so repeated polling is side-effect free.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from sqlalchemy import update as sql_update
from sqlalchemy.orm import Session

from createtree.models import GenerationJob
from createtree.schemas.common import JobKind, JobStatus

logger = logging.getLogger(__name__)


class JobNotFoundError(LookupError):
    """No record exists for the requested job id."""


class InvalidTransitionError(RuntimeError):
    """A write was attempted on a job that already reached a terminal status."""

    def __init__(self, job_id: str, current: JobStatus):
        super().__init__(f"Job {job_id} is already {current.value}")
        self.job_id = job_id
        self.current = current


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class JobRecord:
    id: str
    kind: JobKind
    params: dict[str, Any]
    status: JobStatus = JobStatus.PROCESSING
    progress: int = 0
    message: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        for key in ("created_at", "updated_at", "completed_at"):
            data[key] = data[key].isoformat() if data[key] else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobRecord":
        completed = data.get("completed_at")
        return cls(
            id=data["id"],
            kind=JobKind(data["kind"]),
            params=data.get("params") or {},
            status=JobStatus(data["status"]),
            progress=int(data.get("progress", 0)),
            message=data.get("message"),
            result=data.get("result"),
            error=data.get("error"),
            created_at=_aware(datetime.fromisoformat(data["created_at"])),
            updated_at=_aware(datetime.fromisoformat(data["updated_at"])),
            completed_at=_aware(datetime.fromisoformat(completed)) if completed else None,
        )


_UNSET: Any = object()


def apply_patch(
    record: JobRecord,
    *,
    status: JobStatus | None = None,
    progress: int | None = None,
    message: str | None = _UNSET,
    result: dict[str, Any] | None = _UNSET,
    error: str | None = _UNSET,
) -> JobRecord:
    """Return *record* with the patch applied, enforcing the status lifecycle."""
    if record.is_terminal:
        raise InvalidTransitionError(record.id, record.status)

    now = _utcnow()
    changes: dict[str, Any] = {"updated_at": now}
    if status is not None:
        changes["status"] = status
        if status.is_terminal:
            changes["completed_at"] = now
            if status is JobStatus.COMPLETED and progress is None:
                changes["progress"] = 100
    if progress is not None:
        changes["progress"] = max(0, min(100, int(progress)))
    if message is not _UNSET:
        changes["message"] = message
    if result is not _UNSET:
        changes["result"] = result
    if error is not _UNSET:
        changes["error"] = error
    return replace(record, **changes)


class JobStore:
    """Interface shared by the job status backends."""

    def create(self, kind: JobKind, params: dict[str, Any]) -> JobRecord:
        raise NotImplementedError

    def read(self, job_id: str) -> JobRecord | None:
        raise NotImplementedError

    def update(self, job_id: str, **patch: Any) -> JobRecord:
        raise NotImplementedError

    def delete(self, job_id: str) -> bool:
        raise NotImplementedError

    def list_recent(
        self,
        limit: int = 50,
        kind: JobKind | None = None,
        status: JobStatus | None = None,
    ) -> list[JobRecord]:
        raise NotImplementedError

    def list_active(self) -> list[JobRecord]:
        return [r for r in self.list_recent(limit=0) if not r.is_terminal]

    def purge_expired(self, max_age: timedelta) -> int:
        """Delete terminal records that finished more than *max_age* ago."""
        cutoff = _utcnow() - max_age
        removed = 0
        for record in self.list_recent(limit=0):
            finished = record.completed_at or record.updated_at
            if record.is_terminal and finished < cutoff:
                if self.delete(record.id):
                    removed += 1
        if removed:
            logger.info("Purged %d expired job record(s)", removed)
        return removed

    @staticmethod
    def new_record(kind: JobKind, params: dict[str, Any]) -> JobRecord:
        return JobRecord(id=str(uuid.uuid4()), kind=kind, params=dict(params))


# ── File backend ───────────────────────────────────────────────────────


class FileJobStore(JobStore):
    """One ``job-<id>.json`` file per job inside *directory*."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _path(self, job_id: str) -> Path:
        # Job ids are server generated, but the id also arrives from URLs
        if not job_id or "/" in job_id or "\\" in job_id or job_id.startswith("."):
            raise JobNotFoundError(job_id)
        return self.directory / f"job-{job_id}.json"

    def _lock_path(self, job_id: str) -> Path:
        return self.directory / f".job-{job_id}.lock"

    @contextmanager
    def _locked(self, job_id: str) -> Iterator[None]:
        """Hold the job's write lock across threads and worker processes."""
        self._path(job_id)
        with self._locks_guard:
            lock = self._locks.setdefault(job_id, threading.Lock())
        with lock:
            with open(self._lock_path(job_id), "a") as fh:
                fcntl.flock(fh, fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fh, fcntl.LOCK_UN)

    def _write(self, record: JobRecord) -> None:
        path = self._path(record.id)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".job-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record.to_dict(), fh, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def create(self, kind: JobKind, params: dict[str, Any]) -> JobRecord:
        record = self.new_record(kind, params)
        self._write(record)
        return record

    def read(self, job_id: str) -> JobRecord | None:
        try:
            path = self._path(job_id)
        except JobNotFoundError:
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return JobRecord.from_dict(json.loads(raw))

    def update(self, job_id: str, **patch: Any) -> JobRecord:
        with self._locked(job_id):
            record = self.read(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            updated = apply_patch(record, **patch)
            self._write(updated)
        return updated

    def delete(self, job_id: str) -> bool:
        try:
            self._path(job_id).unlink()
        except (FileNotFoundError, JobNotFoundError):
            return False
        self._lock_path(job_id).unlink(missing_ok=True)
        with self._locks_guard:
            self._locks.pop(job_id, None)
        return True

    def list_recent(self, limit=50, kind=None, status=None) -> list[JobRecord]:
        records = []
        for path in self.directory.glob("job-*.json"):
            try:
                record = JobRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError) as exc:
                logger.warning("Skipping unreadable job file %s: %s", path.name, exc)
                continue
            if kind is not None and record.kind is not kind:
                continue
            if status is not None and record.status is not status:
                continue
            records.append(record)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit] if limit else records


# ── Database backend ───────────────────────────────────────────────────


def _record_from_row(job: GenerationJob) -> JobRecord:
    return JobRecord(
        id=job.id,
        kind=JobKind(job.kind),
        params=job.params or {},
        status=JobStatus(job.status),
        progress=job.progress_pct,
        message=job.current_message,
        result=job.result,
        error=job.error_message,
        created_at=_aware(job.created_at),
        updated_at=_aware(job.updated_at),
        completed_at=_aware(job.completed_at),
    )


def _row_values(record: JobRecord) -> dict[str, Any]:
    return {
        "kind": record.kind.value,
        "params": record.params,
        "status": record.status.value,
        "progress_pct": record.progress,
        "current_message": record.message,
        "result": record.result,
        "error_message": record.error,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
        "completed_at": record.completed_at,
    }


def _copy_to_row(record: JobRecord, job: GenerationJob) -> None:
    for key, value in _row_values(record).items():
        setattr(job, key, value)


class SqlJobStore(JobStore):
    """Job records kept in the ``generation_jobs`` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def create(self, kind: JobKind, params: dict[str, Any]) -> JobRecord:
        record = self.new_record(kind, params)
        db = self.session_factory()
        try:
            job = GenerationJob(id=record.id)
            _copy_to_row(record, job)
            db.add(job)
            db.commit()
        finally:
            db.close()
        return record

    def read(self, job_id: str) -> JobRecord | None:
        db = self.session_factory()
        try:
            job = db.query(GenerationJob).filter(GenerationJob.id == job_id).first()
            return _record_from_row(job) if job else None
        finally:
            db.close()

    def update(self, job_id: str, **patch: Any) -> JobRecord:
        db = self.session_factory()
        try:
            job = (
                db.query(GenerationJob)
                .filter(GenerationJob.id == job_id)
                .with_for_update()
                .first()
            )
            if job is None:
                raise JobNotFoundError(job_id)
            updated = apply_patch(_record_from_row(job), **patch)

            # Only a still-processing row may be written
            changed = db.execute(
                sql_update(GenerationJob)
                .where(
                    GenerationJob.id == job_id,
                    GenerationJob.status == JobStatus.PROCESSING.value,
                )
                .values(**_row_values(updated))
                .execution_options(synchronize_session=False)
            ).rowcount
            if not changed:
                db.rollback()
                current = db.query(GenerationJob).filter(GenerationJob.id == job_id).first()
                if current is None:
                    raise JobNotFoundError(job_id)
                raise InvalidTransitionError(job_id, JobStatus(current.status))
            db.commit()
            return updated
        finally:
            db.close()

    def set_celery_task_id(self, job_id: str, task_id: str) -> None:
        db = self.session_factory()
        try:
            job = db.query(GenerationJob).filter(GenerationJob.id == job_id).first()
            if job:
                job.celery_task_id = task_id
                db.commit()
        finally:
            db.close()

    def delete(self, job_id: str) -> bool:
        db = self.session_factory()
        try:
            deleted = db.query(GenerationJob).filter(GenerationJob.id == job_id).delete()
            db.commit()
            return bool(deleted)
        finally:
            db.close()

    def list_recent(self, limit=50, kind=None, status=None) -> list[JobRecord]:
        db = self.session_factory()
        try:
            query = db.query(GenerationJob)
            if kind is not None:
                query = query.filter(GenerationJob.kind == kind.value)
            if status is not None:
                query = query.filter(GenerationJob.status == status.value)
            query = query.order_by(GenerationJob.created_at.desc())
            if limit:
                query = query.limit(limit)
            return [_record_from_row(job) for job in query.all()]
        finally:
            db.close()


def build_job_store(settings) -> JobStore:
    """Instantiate the backend selected by ``settings.JOB_STORE``."""
    if settings.JOB_STORE == "database":
        from createtree.database import SessionLocal
        return SqlJobStore(SessionLocal)
    if settings.JOB_STORE != "file":
        logger.warning("Unknown JOB_STORE %r, using file store", settings.JOB_STORE)
    return FileJobStore(settings.job_status_path)
