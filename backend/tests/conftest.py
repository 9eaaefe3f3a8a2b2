"""Test configuration and fixtures."""
import io
import os
import tempfile

# Settings are cached on first import, so point them at throwaway
# locations before anything from createtree is imported.
_TMP = tempfile.mkdtemp(prefix="createtree-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["JOB_STATUS_DIR"] = os.path.join(_TMP, "jobs")
os.environ["SUNO_COOKIE_FILE"] = os.path.join(_TMP, "missing-cookies.json")
os.environ["OPENAI_API_KEY"] = ""
os.environ["REDIS_URL"] = ""
os.environ["JOB_BACKEND"] = "inprocess"
os.environ["JOB_STORE"] = "file"

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from createtree.database import Base, create_tables
from createtree.schemas.generation import MusicGenerationRequest
from createtree.services.job_store import FileJobStore, SqlJobStore
from createtree.services.suno_automation import MusicGenerationResult

create_tables()


class FakeMusicGenerator:
    """Stands in for the Suno automation: reports progress and returns a track."""

    def __init__(self, duration=None, title="Calm Lullaby"):
        self.duration = duration
        self.title = title
        self.requests: list[MusicGenerationRequest] = []

    async def generate(self, request, job_id, progress=None):
        self.requests.append(request)
        if progress:
            progress("Composing music", 50)
        return MusicGenerationResult(
            audio_url=f"/uploads/suno/suno-{job_id}.mp3",
            local_path=f"uploads/suno/suno-{job_id}.mp3",
            title=request.title or self.title,
            lyrics="Hush now, little one",
            duration=self.duration,
        )


@pytest.fixture
def session_factory():
    """Session factory over one shared in-memory SQLite connection."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def file_store(tmp_path):
    return FileJobStore(tmp_path / "jobs")


@pytest.fixture(params=["file", "sql"])
def store(request, tmp_path):
    """Each job store backend in turn."""
    if request.param == "file":
        return FileJobStore(tmp_path / "jobs")
    return SqlJobStore(request.getfixturevalue("session_factory"))


@pytest.fixture
def fake_generator():
    return FakeMusicGenerator()


@pytest.fixture
def png_bytes():
    """A tiny valid PNG."""
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 120, 80)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def generator_factory():
    """Build fake music generators with a chosen extracted duration."""
    return FakeMusicGenerator
