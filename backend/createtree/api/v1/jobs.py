"""Job status, listing and cancellation endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from createtree.api.deps import get_job_runner, get_job_store
from createtree.schemas.common import JobKind, JobStatus
from createtree.schemas.generation import JobResponse, JobStatusResponse
from createtree.services.job_runner import JobDispatcher
from createtree.services.job_store import InvalidTransitionError, JobNotFoundError, JobRecord, JobStore
from createtree.services.progress_tracker import status_payload

router = APIRouter()


def _to_response(record: JobRecord) -> JobResponse:
    return JobResponse(
        id=record.id,
        kind=record.kind,
        status=record.status,
        progress=record.progress,
        message=record.message,
        error=record.error,
        params=record.params,
        result=record.result,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
    )


@router.get(
    "/jobs/{job_id}/status",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
def get_job_status(job_id: str, store: JobStore = Depends(get_job_store)):
    """Current snapshot of a job. Reading never changes the job."""
    record = store.read(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse.model_validate(status_payload(record))


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
def cancel_job(job_id: str, runner: JobDispatcher = Depends(get_job_runner)):
    """Cancel a running job."""
    try:
        record = runner.cancel(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot cancel job in '{exc.current.value}' state",
        )
    return _to_response(record)


@router.get("/jobs", response_model=list[JobResponse])
def list_jobs(
    kind: JobKind | None = None,
    status: JobStatus | None = None,
    limit: int = Query(50, ge=1, le=500),
    store: JobStore = Depends(get_job_store),
):
    """Most recent jobs first."""
    return [_to_response(r) for r in store.list_recent(limit=limit, kind=kind, status=status)]
