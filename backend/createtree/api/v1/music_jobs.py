"""Music generation job submission."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from createtree.api.deps import get_job_runner
from createtree.schemas.common import JobKind
from createtree.schemas.generation import JobSubmitResponse, MusicGenerationRequest
from createtree.services.job_runner import JobDispatcher

router = APIRouter()


@router.post("/music-jobs", response_model=JobSubmitResponse, status_code=202)
async def submit_music_job(
    payload: MusicGenerationRequest,
    runner: JobDispatcher = Depends(get_job_runner),
):
    """Start a Suno music generation job and return its id immediately."""
    record = runner.submit(JobKind.MUSIC, payload.model_dump(mode="json"))
    return JobSubmitResponse(job_id=record.id, message="Music generation started")
