"""Gallery listings of finished songs and image transformations."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from createtree.database import get_db
from createtree.models import ImageTransformation, MusicTrack
from createtree.schemas.common import TransformOutcome
from createtree.schemas.image import ImageTransformationItem, MusicTrackItem

router = APIRouter()


@router.get("/music", response_model=list[MusicTrackItem])
def list_music(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return (
        db.query(MusicTrack)
        .order_by(MusicTrack.created_at.desc())
        .limit(limit)
        .all()
    )


@router.get("/images", response_model=list[ImageTransformationItem])
def list_images(
    style: str | None = None,
    include_failed: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Transformed images, newest first. Placeholder results are hidden unless requested."""
    query = db.query(ImageTransformation)
    if style:
        query = query.filter(ImageTransformation.style == style)
    if not include_failed:
        query = query.filter(ImageTransformation.outcome == TransformOutcome.SUCCESS.value)
    return query.order_by(ImageTransformation.created_at.desc()).limit(limit).all()
