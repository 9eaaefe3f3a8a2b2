"""General helper utilities."""
import os
import uuid
from pathlib import Path
from werkzeug.utils import secure_filename


def make_unique_filename(original_name: str) -> str:
    """Return a sanitized filename with a UUID suffix to avoid collisions."""
    safe = secure_filename(original_name) or "upload"
    name, ext = os.path.splitext(safe)
    return f"{name}_{uuid.uuid4().hex[:8]}{ext.lower()}"


def file_extension(filename: str) -> str:
    """Return lowercase extension without the dot."""
    return Path(filename).suffix.lstrip(".").lower()


ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}


def is_allowed_image(filename: str) -> bool:
    return file_extension(filename) in ALLOWED_IMAGE_EXTENSIONS
