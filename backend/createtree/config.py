"""Application configuration using Pydantic Settings."""
from pathlib import Path
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Application
    APP_NAME: str = "CreateTree Generation Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./data/createtree.db"

    # Redis (progress pub/sub + Celery broker). Empty disables pub/sub.
    REDIS_URL: str = ""

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # File storage
    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_SIZE_MB: int = 10

    # OpenAI image providers. A missing or malformed key degrades the
    # orchestrator to its placeholder path; it never blocks startup.
    OPENAI_API_KEY: str = ""
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    DEFAULT_IMAGE_MODEL: str = "gpt-image-1"  # or "dall-e-3"
    IMAGE_SIZE: str = "1024x1024"
    IMAGE_QUALITY: str = "standard"

    # Jobs
    JOB_BACKEND: str = "inprocess"            # "inprocess" | "celery"
    JOB_STORE: str = "file"                   # "file" | "database"
    JOB_STATUS_DIR: str = "./uploads/temp"
    JOB_TIMEOUT_SECONDS: float = 900.0
    JOB_RETENTION_DAYS: int = 7
    JOB_SWEEP_INTERVAL_SECONDS: int = 3600

    # Suno browser automation
    SUNO_BASE_URL: str = "https://app.suno.ai"
    SUNO_COOKIE_FILE: str = "./config/suno-cookies.json"
    SUNO_GENERATION_TIMEOUT_SECONDS: int = 300  # wait for the "complete" marker
    SUNO_HEADLESS: bool = True

    # Client poller defaults
    POLL_INTERVAL_SECONDS: float = 3.0
    POLL_TIMEOUT_SECONDS: float = 600.0

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def upload_path(self) -> Path:
        p = Path(self.UPLOAD_DIR)
        p.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def image_upload_path(self) -> Path:
        p = self.upload_path / "images"
        p.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def music_output_path(self) -> Path:
        p = self.upload_path / "suno"
        p.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def job_status_path(self) -> Path:
        p = Path(self.JOB_STATUS_DIR)
        p.mkdir(parents=True, exist_ok=True)
        return p

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
