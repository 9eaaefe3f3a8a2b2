"""Image transformation endpoints: background job and synchronous transform."""
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from createtree.api.deps import get_job_runner, get_orchestrator
from createtree.config import get_settings
from createtree.database import get_db
from createtree.models import ImageTransformation
from createtree.schemas.common import ImageModel, JobKind
from createtree.schemas.generation import JobSubmitResponse
from createtree.schemas.image import ImageTransformResponse
from createtree.services.image_orchestrator import ImageTransformOrchestrator
from createtree.services.job_runner import JobDispatcher
from createtree.utils.helpers import ALLOWED_IMAGE_EXTENSIONS, is_allowed_image, make_unique_filename

router = APIRouter()
logger = logging.getLogger(__name__)


async def _save_upload(image: UploadFile) -> tuple[Path, bytes]:
    """Validate and store an uploaded image under ``uploads/images``."""
    settings = get_settings()
    if not image.filename or not is_allowed_image(image.filename):
        allowed = ", ".join(sorted(ALLOWED_IMAGE_EXTENSIONS))
        raise HTTPException(status_code=400, detail=f"Unsupported image type (allowed: {allowed})")

    content = await image.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded image is empty")
    if len(content) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise HTTPException(
            status_code=413,
            detail=f"'{image.filename}' exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit",
        )

    dest = settings.image_upload_path / make_unique_filename(image.filename)
    dest.write_bytes(content)
    return dest, content


@router.post("/image-jobs", response_model=JobSubmitResponse, status_code=202)
async def submit_image_job(
    image: UploadFile = File(...),
    style: str = Form(..., min_length=1, max_length=100),
    prompt: str | None = Form(None),
    model: ImageModel | None = Form(None),
    runner: JobDispatcher = Depends(get_job_runner),
):
    """Start a background style transform of the uploaded photo."""
    path, _ = await _save_upload(image)
    record = runner.submit(JobKind.IMAGE, {
        "image_path": str(path),
        "original_filename": image.filename,
        "style": style,
        "prompt": prompt,
        "model": model.value if model else None,
    })
    return JobSubmitResponse(job_id=record.id, message="Image transformation started")


@router.post("/image/transform", response_model=ImageTransformResponse, status_code=201)
async def transform_image(
    image: UploadFile = File(...),
    style: str = Form(..., min_length=1, max_length=100),
    prompt: str | None = Form(None),
    model: ImageModel | None = Form(None),
    orchestrator: ImageTransformOrchestrator = Depends(get_orchestrator),
    db: Session = Depends(get_db),
):
    """Transform the uploaded photo inline. Always answers with an image URL."""
    path, content = await _save_upload(image)
    result = await orchestrator.transform(content, style, custom_prompt=prompt, prefer=model)

    row = ImageTransformation(
        original_filename=image.filename,
        original_path=str(path),
        style=style,
        transformed_url=result.url,
        outcome=result.outcome.value,
        provider=result.provider.value if result.provider else None,
    )
    db.add(row)
    db.commit()
    db.refresh(row)

    return ImageTransformResponse(
        id=row.id,
        image_url=result.url,
        outcome=result.outcome,
        provider=result.provider,
        style=style,
        message=None if result.ok else result.error,
    )
