"""Image transform orchestration: primary model, fallback model, placeholders.

``ImageTransformOrchestrator.transform()`` turns a photo and a style key
into exactly one image URL. It tries the preferred model once, falls back
to the other model once, and maps every failure onto one of two fixed
placeholder URLs. It never raises to its caller; the returned
``TransformResult`` carries an outcome tag so callers can branch without
string-matching the placeholder URLs.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import httpx
from PIL import Image, UnidentifiedImageError

from createtree.schemas.common import ImageModel, TransformOutcome
from createtree.services.http_client_manager import get_http_client
from createtree.services.openai_images import OPENAI_API_BASE, ImageProviderError, call_image_model
from createtree.services.style_prompts import compose_edit_prompt, compose_generation_prompt

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE_URL = (
    "https://placehold.co/1024x1024/A7C1E2/FFF?text="
    "Image+generation+service+is+currently+unavailable"
)
SAFETY_FILTER_URL = (
    "https://placehold.co/1024x1024/A7C1E2/FFF?text="
    "Rejected+by+the+safety+system.+Please+try+a+different+image+or+prompt"
)

SAFETY_MARKERS = ("safety", "content_policy", "content policy")


def is_policy_rejection(error_text: str) -> bool:
    lowered = error_text.lower()
    return any(marker in lowered for marker in SAFETY_MARKERS)


@dataclass(frozen=True)
class ProviderCredentials:
    """Provider secrets, injected instead of read from the environment."""
    openai_api_key: str = ""

    @property
    def has_valid_openai_key(self) -> bool:
        key = (self.openai_api_key or "").strip()
        return key.startswith("sk-") and len(key) > 3


@dataclass(frozen=True)
class TransformResult:
    outcome: TransformOutcome
    url: str
    provider: ImageModel | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is TransformOutcome.SUCCESS

    @classmethod
    def unavailable(cls, error: str | None = None, provider: ImageModel | None = None) -> "TransformResult":
        return cls(TransformOutcome.UNAVAILABLE, SERVICE_UNAVAILABLE_URL, provider, error)

    @classmethod
    def policy_rejected(cls, error: str, provider: ImageModel | None = None) -> "TransformResult":
        return cls(TransformOutcome.POLICY_REJECTED, SAFETY_FILTER_URL, provider, error)


def normalize_image(data: bytes) -> bytes:
    """Decode *data* with Pillow and re-encode it as PNG.

    Raises ValueError when the payload is not a readable image.
    """
    if not data:
        raise ValueError("Empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA")
            out = io.BytesIO()
            img.save(out, format="PNG")
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Unreadable image: {exc}") from exc
    return out.getvalue()


class ImageTransformOrchestrator:
    """Decides which image model to call, in which order, with what prompt."""

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = OPENAI_API_BASE,
        default_model: ImageModel = ImageModel.GPT_IMAGE_1,
        size: str = "1024x1024",
        quality: str = "standard",
    ):
        self.credentials = credentials
        self._client = client
        self.base_url = base_url
        self.default_model = default_model
        self.size = size
        self.quality = quality

    @classmethod
    def from_settings(cls, settings) -> "ImageTransformOrchestrator":
        try:
            default_model = ImageModel(settings.DEFAULT_IMAGE_MODEL)
        except ValueError:
            logger.warning("Unknown DEFAULT_IMAGE_MODEL %r, using gpt-image-1", settings.DEFAULT_IMAGE_MODEL)
            default_model = ImageModel.GPT_IMAGE_1
        return cls(
            ProviderCredentials(openai_api_key=settings.OPENAI_API_KEY),
            base_url=settings.OPENAI_API_BASE,
            default_model=default_model,
            size=settings.IMAGE_SIZE,
            quality=settings.IMAGE_QUALITY,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client("openai")

    def model_chain(self, prefer: ImageModel | None = None) -> list[ImageModel]:
        first = prefer or self.default_model
        return [first] + [m for m in ImageModel if m is not first]

    def prompt_for(self, model: ImageModel, style: str, custom_prompt: str | None) -> str:
        if model is ImageModel.GPT_IMAGE_1:
            return compose_edit_prompt(style, custom_prompt)
        return compose_generation_prompt(style, custom_prompt)

    async def transform(
        self,
        image: bytes,
        style: str,
        *,
        custom_prompt: str | None = None,
        prefer: ImageModel | None = None,
    ) -> TransformResult:
        """Produce one image URL for *image* in *style*. Never raises."""
        if not self.credentials.has_valid_openai_key:
            logger.error("OpenAI API key is missing or malformed; returning placeholder")
            return TransformResult.unavailable("Image provider credential is not configured")

        try:
            image_png = normalize_image(image)
        except ValueError as exc:
            logger.warning("Rejected image input: %s", exc)
            return TransformResult(TransformOutcome.INVALID_INPUT, SERVICE_UNAVAILABLE_URL, None, str(exc))

        errors: list[str] = []
        model: ImageModel | None = None
        try:
            for model in self.model_chain(prefer):
                prompt = self.prompt_for(model, style, custom_prompt)
                try:
                    url = await call_image_model(
                        self.client,
                        model,
                        api_key=self.credentials.openai_api_key,
                        prompt=prompt,
                        image_png=image_png,
                        base_url=self.base_url,
                        size=self.size,
                        quality=self.quality,
                    )
                except (ImageProviderError, httpx.HTTPError) as exc:
                    errors.append(str(exc))
                    if is_policy_rejection(str(exc)):
                        logger.warning("%s rejected the request by content policy", model.value)
                        return TransformResult.policy_rejected(str(exc), model)
                    logger.warning("%s failed, trying next model: %s", model.value, exc)
                    continue

                if url:
                    logger.info("Image transformed with %s (style=%s)", model.value, style)
                    return TransformResult(TransformOutcome.SUCCESS, url, model)
                errors.append(f"{model.value}: response contained no image URL")
                logger.warning("%s returned no image URL, trying next model", model.value)
        except Exception as exc:
            logger.exception("Image transform aborted: %s", exc)
            errors.append(f"{type(exc).__name__}: {exc}")
            if is_policy_rejection(str(exc)):
                return TransformResult.policy_rejected(str(exc), model)

        return TransformResult.unavailable("; ".join(errors) or None, model)
