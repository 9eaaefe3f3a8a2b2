"""Image transformation schemas."""
from datetime import datetime
from createtree.schemas.common import CamelModel, ImageModel, TransformOutcome


class ImageTransformResponse(CamelModel):
    id: str | None = None
    image_url: str
    outcome: TransformOutcome
    provider: ImageModel | None = None
    style: str
    message: str | None = None


class ImageTransformationItem(CamelModel):
    id: str
    job_id: str | None
    original_filename: str
    style: str
    transformed_url: str
    outcome: TransformOutcome
    provider: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class MusicTrackItem(CamelModel):
    id: str
    job_id: str | None
    title: str
    prompt: str
    style: str | None
    lyrics: str | None
    duration: int | None
    audio_url: str
    cover_image_url: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
