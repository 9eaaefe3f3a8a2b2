"""Shared / common schemas: enums, camelCase base model, simple responses."""
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# ── Enums ──────────────────────────────────────────────────────────────

class JobKind(str, Enum):
    MUSIC = "music"
    IMAGE = "image"


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class TransformOutcome(str, Enum):
    SUCCESS = "success"
    POLICY_REJECTED = "policy_rejected"
    UNAVAILABLE = "unavailable"
    INVALID_INPUT = "invalid_input"


class ImageModel(str, Enum):
    GPT_IMAGE_1 = "gpt-image-1"
    DALLE_3 = "dall-e-3"


class VocalGender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    NONE = "none"


class MusicDuration(str, Enum):
    SECONDS_60 = "60"
    SECONDS_120 = "120"
    SECONDS_180 = "180"
    SECONDS_240 = "240"


class LyricsLanguage(str, Enum):
    ENGLISH = "english"
    KOREAN = "korean"
    JAPANESE = "japanese"
    CHINESE = "chinese"
    SPANISH = "spanish"


# ── Base models ────────────────────────────────────────────────────────

class CamelModel(BaseModel):
    """Base model serialised with camelCase keys for the web client.

    Accepts both camelCase and snake_case on input.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Common Responses ───────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
