"""HTTP callers for the OpenAI image models.

Provides a single ``call_image_model()`` interface that routes to the
right endpoint for each model:

  - ``gpt-image-1``: ``POST /images/edits`` (multipart, conditioned on the photo)
  - ``dall-e-3``: ``POST /images/generations`` (JSON, text only)

No retry or fallback logic lives here; the orchestrator decides what to
try next.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from createtree.schemas.common import ImageModel

logger = logging.getLogger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"


class ImageProviderError(Exception):
    """Non-success or unparseable response from an image provider.

    The string form carries the provider's error text so callers can look
    for content-policy markers in it.
    """

    def __init__(self, model: str, message: str, status_code: int | None = None, body: str = ""):
        self.model = model
        self.message = message
        self.status_code = status_code
        self.body = body
        status = f"HTTP {status_code}" if status_code is not None else "no status"
        detail = f"{message} | {body[:500]}" if body and body not in message else message
        super().__init__(f"{model} ({status}): {detail}")


def _extract_image_url(resp: httpx.Response, model: str) -> str | None:
    """Return the first result URL, or None when the response has none."""
    try:
        data: Any = resp.json()
    except ValueError:
        raise ImageProviderError(model, "Malformed JSON response", resp.status_code, resp.text)

    error = data.get("error") if isinstance(data, dict) else None
    if not resp.is_success or error:
        if isinstance(error, dict):
            message = error.get("message") or error.get("code") or "Provider error"
        else:
            message = str(error or f"HTTP error {resp.status_code}")
        raise ImageProviderError(model, message, resp.status_code, resp.text)

    items = data.get("data") if isinstance(data, dict) else None
    if not items:
        return None
    first = items[0] or {}
    if first.get("url"):
        return first["url"]
    if first.get("b64_json"):
        return f"data:image/png;base64,{first['b64_json']}"
    return None


async def _call_gpt_image_edit(
    client: httpx.AsyncClient,
    api_key: str,
    base_url: str,
    prompt: str,
    image_png: bytes,
    size: str,
    quality: str,
) -> str | None:
    """Restyle the uploaded photo with gpt-image-1."""
    resp = await client.post(
        f"{base_url.rstrip('/')}/images/edits",
        headers={"Authorization": f"Bearer {api_key}"},
        data={
            "model": ImageModel.GPT_IMAGE_1.value,
            "prompt": prompt,
            "n": "1",
            "size": size,
        },
        files={"image": ("image.png", image_png, "image/png")},
    )
    return _extract_image_url(resp, ImageModel.GPT_IMAGE_1.value)


async def _call_dalle3_generation(
    client: httpx.AsyncClient,
    api_key: str,
    base_url: str,
    prompt: str,
    image_png: bytes,
    size: str,
    quality: str,
) -> str | None:
    """Generate a new image from the prompt alone with dall-e-3."""
    resp = await client.post(
        f"{base_url.rstrip('/')}/images/generations",
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        json={
            "model": ImageModel.DALLE_3.value,
            "prompt": prompt,
            "n": 1,
            "size": size,
            "quality": quality,
            "response_format": "url",
        },
    )
    return _extract_image_url(resp, ImageModel.DALLE_3.value)


_CALLERS = {
    ImageModel.GPT_IMAGE_1: _call_gpt_image_edit,
    ImageModel.DALLE_3: _call_dalle3_generation,
}


async def call_image_model(
    client: httpx.AsyncClient,
    model: ImageModel,
    *,
    api_key: str,
    prompt: str,
    image_png: bytes = b"",
    base_url: str = OPENAI_API_BASE,
    size: str = "1024x1024",
    quality: str = "standard",
) -> str | None:
    """Send one image request and return the result URL (or None).

    Raises
    ------
    ImageProviderError : non-2xx status, error object, or malformed body
    httpx.HTTPError : transport failures (connect, timeout, ...)
    """
    caller = _CALLERS[model]
    logger.debug("Calling %s (prompt: %.80s...)", model.value, prompt)
    return await caller(client, api_key, base_url, prompt, image_png, size, quality)
