"""Music and image generation pipelines executed for background jobs.

Each pipeline is an ``async (tracker, params) -> result`` callable. It
reports progress through the tracker, persists a gallery row for the
finished artefact, and returns the result dict stored on the job record.
Pipelines raise on failure; the job runner turns exceptions into a
``failed`` status.
"""
from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from sqlalchemy.orm import Session

from createtree.models import ImageTransformation, MusicTrack
from createtree.schemas.common import ImageModel, JobKind, TransformOutcome
from createtree.schemas.generation import MusicGenerationRequest
from createtree.services.image_orchestrator import ImageTransformOrchestrator
from createtree.services.progress_tracker import ProgressTracker
from createtree.services.suno_automation import MusicGenerationResult, ProgressCallback

logger = logging.getLogger(__name__)

Pipeline = Callable[[ProgressTracker, dict[str, Any]], Awaitable[dict[str, Any]]]


class MusicGenerator(Protocol):
    async def generate(
        self,
        request: MusicGenerationRequest,
        job_id: str,
        progress: ProgressCallback | None = None,
    ) -> MusicGenerationResult: ...


class ImageJobFailed(RuntimeError):
    """The orchestrator returned a placeholder instead of an image."""

    def __init__(self, message: str, result: dict[str, Any]):
        super().__init__(message)
        self.result = result


_OUTCOME_MESSAGES = {
    TransformOutcome.POLICY_REJECTED: "The image was rejected by the provider's safety system. Try a different image or prompt.",
    TransformOutcome.UNAVAILABLE: "Image generation service is currently unavailable. Please try again later.",
    TransformOutcome.INVALID_INPUT: "The uploaded file is not a readable image.",
}


def describe_failure(exc: BaseException) -> str:
    """Turn an exception into a message suitable for the end user."""
    error_str = str(exc) or type(exc).__name__
    lowered = error_str.lower()
    if "401" in error_str or "unauthorized" in lowered:
        return f"Authentication failed with the generation provider. Please check the configured credentials. ({error_str})"
    if "429" in error_str or "rate limit" in lowered:
        return f"Rate limit exceeded by the generation provider. Try again later. ({error_str})"
    if "timeout" in lowered or "timed out" in lowered:
        return f"The generation provider timed out. It may be overloaded. ({error_str})"
    if "connection" in lowered or "connect" in lowered:
        return f"Could not connect to the generation provider. Check your network and provider status. ({error_str})"
    return f"Generation failed: {error_str}"


def _save_row(session_factory: Callable[[], Session] | None, row) -> str | None:
    """Persist a gallery row. Failures are logged, the job still completes."""
    if session_factory is None:
        return None
    db = None
    try:
        db = session_factory()
        db.add(row)
        db.commit()
        return row.id
    except Exception as exc:
        if db is not None:
            db.rollback()
        logger.error("Could not store %s: %s", type(row).__name__, exc)
        return None
    finally:
        if db is not None:
            db.close()


# ── Music ──────────────────────────────────────────────────────────────


async def run_music_job(
    tracker: ProgressTracker,
    params: dict[str, Any],
    *,
    generator: MusicGenerator,
    session_factory: Callable[[], Session] | None = None,
) -> dict[str, Any]:
    request = MusicGenerationRequest.model_validate(params)
    tracker.update("Preparing music generation", 5)

    generated = await generator.generate(request, tracker.job_id, tracker.update)
    tracker.check_cancelled()

    duration = generated.duration or request.duration_seconds
    tracker.update("Saving track", 95)
    track_id = _save_row(session_factory, MusicTrack(
        job_id=tracker.job_id,
        title=generated.title,
        prompt=request.prompt,
        style=request.style,
        tags=[request.style] if request.style else None,
        lyrics=generated.lyrics,
        duration=duration,
        audio_url=generated.audio_url,
        cover_image_url=generated.cover_image_url,
    ))

    return {
        "audio_url": generated.audio_url,
        "title": generated.title,
        "lyrics": generated.lyrics,
        "duration": duration,
        "cover_image_url": generated.cover_image_url,
        "track_id": track_id,
    }


# ── Image ──────────────────────────────────────────────────────────────


async def run_image_job(
    tracker: ProgressTracker,
    params: dict[str, Any],
    *,
    orchestrator: ImageTransformOrchestrator,
    session_factory: Callable[[], Session] | None = None,
) -> dict[str, Any]:
    image_path = Path(params["image_path"])
    style = params["style"]
    tracker.update("Reading uploaded image", 10)
    image = image_path.read_bytes()

    prefer = ImageModel(params["model"]) if params.get("model") else None
    tracker.update(f"Transforming image ({style})", 30)
    transformed = await orchestrator.transform(
        image, style, custom_prompt=params.get("prompt"), prefer=prefer,
    )
    tracker.check_cancelled()

    provider = transformed.provider.value if transformed.provider else None
    row_id = _save_row(session_factory, ImageTransformation(
        job_id=tracker.job_id,
        original_filename=params.get("original_filename") or image_path.name,
        original_path=str(image_path),
        style=style,
        transformed_url=transformed.url,
        outcome=transformed.outcome.value,
        provider=provider,
    ))

    result = {
        "image_url": transformed.url,
        "outcome": transformed.outcome.value,
        "provider": provider,
        "transformation_id": row_id,
    }
    if not transformed.ok:
        raise ImageJobFailed(_OUTCOME_MESSAGES[transformed.outcome], result)
    return result


def build_pipelines(
    *,
    generator: MusicGenerator,
    orchestrator: ImageTransformOrchestrator,
    session_factory: Callable[[], Session] | None = None,
) -> dict[JobKind, Pipeline]:
    return {
        JobKind.MUSIC: functools.partial(
            run_music_job, generator=generator, session_factory=session_factory,
        ),
        JobKind.IMAGE: functools.partial(
            run_image_job, orchestrator=orchestrator, session_factory=session_factory,
        ),
    }
