"""Generation request parameters and job schemas."""
from datetime import datetime
from pydantic import ConfigDict, Field
from createtree.schemas.common import (
    CamelModel,
    JobKind,
    JobStatus,
    LyricsLanguage,
    MusicDuration,
    TransformOutcome,
    VocalGender,
)


class MusicGenerationRequest(CamelModel):
    """Validated input of a music job. Immutable once the job exists."""
    model_config = ConfigDict(frozen=True)

    prompt: str = Field(min_length=5, max_length=2000, description="What the song should be about")
    style: str | None = Field(default=None, max_length=100, description="e.g. lullaby, pop, kpop")
    lyrics: str | None = Field(default=None, max_length=5000, description="Used verbatim; generated by Suno when empty")
    vocal_gender: VocalGender | None = None
    duration: MusicDuration | None = None
    title: str | None = Field(default=None, max_length=200)
    language: LyricsLanguage | None = None

    @property
    def duration_seconds(self) -> int | None:
        return int(self.duration.value) if self.duration else None


class JobSubmitResponse(CamelModel):
    job_id: str
    message: str = "Generation started"


class JobStatusResponse(CamelModel):
    """Snapshot returned to pollers. Absent fields are omitted."""
    job_id: str
    kind: JobKind
    status: JobStatus
    progress: int = 0
    message: str | None = None
    audio_url: str | None = None
    image_url: str | None = None
    title: str | None = None
    lyrics: str | None = None
    duration: int | None = None
    cover_image_url: str | None = None
    outcome: TransformOutcome | None = None
    updated_at: datetime | None = None


class JobResponse(CamelModel):
    id: str
    kind: JobKind
    status: JobStatus
    progress: int
    message: str | None
    error: str | None
    params: dict
    result: dict | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
