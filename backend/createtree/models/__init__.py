"""SQLAlchemy ORM models package."""
from createtree.models.generation_job import GenerationJob
from createtree.models.music_track import MusicTrack
from createtree.models.image_transformation import ImageTransformation

__all__ = [
    "GenerationJob",
    "MusicTrack",
    "ImageTransformation",
]
