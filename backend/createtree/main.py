"""FastAPI application entry point and lifespan management.

Configures CORS, registers API routers, builds the job store, runner and
image orchestrator, and manages the application lifespan (directories,
database tables, orphaned-job recovery, the expiry sweep). Serves as the
single top-level module that wires together all sub-packages.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from createtree.api.v1.router import router as v1_router
from createtree.config import Settings, get_settings
from createtree.database import SessionLocal, create_tables
from createtree.schemas.common import HealthResponse
from createtree.services.generation_pipeline import MusicGenerator, build_pipelines
from createtree.services.http_client_manager import close_all_clients
from createtree.services.image_orchestrator import ImageTransformOrchestrator, ProviderCredentials
from createtree.services.job_runner import JobDispatcher, build_job_runner
from createtree.services.job_store import JobStore, build_job_store
from createtree.services.suno_automation import SunoAutomation
from createtree.utils.startup import cleanup_orphaned_jobs, purge_expired_jobs

logger = logging.getLogger(__name__)


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Suppress noisy third-party HTTP loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


async def _sweep_expired_jobs(store: JobStore, retention_days: int, interval: float):
    """Periodically delete finished job records past their retention."""
    while True:
        await asyncio.to_thread(purge_expired_jobs, store, retention_days)
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Runs on startup: directories, DB tables, orphan cleanup, expiry sweep."""
    settings: Settings = app.state.settings
    _setup_logging(settings.LOG_LEVEL)

    # Ensure data directories exist
    settings.upload_path.mkdir(parents=True, exist_ok=True)
    settings.music_output_path.mkdir(parents=True, exist_ok=True)
    settings.job_status_path.mkdir(parents=True, exist_ok=True)

    # Ensure DB directory exists
    db_path = settings.DATABASE_URL.replace("sqlite:///", "")
    if db_path:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    create_tables()
    logger.info("Database tables ready")

    # Jobs left "processing" by a previous process can never finish
    store: JobStore = app.state.job_store
    if settings.JOB_BACKEND != "celery":
        cleanup_orphaned_jobs(store)

    if not ProviderCredentials(settings.OPENAI_API_KEY).has_valid_openai_key:
        logger.warning("OPENAI_API_KEY is missing or malformed; image transforms will return placeholders")

    sweeper = None
    if settings.JOB_BACKEND != "celery" and settings.JOB_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(
            _sweep_expired_jobs(store, settings.JOB_RETENTION_DAYS, settings.JOB_SWEEP_INTERVAL_SECONDS)
        )

    yield  # Application runs here

    if sweeper is not None:
        sweeper.cancel()
    await app.state.job_runner.shutdown()
    # Graceful shutdown: close shared HTTP clients
    await close_all_clients()
    logger.info("Shutting down")


def create_app(
    settings: Settings | None = None,
    *,
    job_store: JobStore | None = None,
    music_generator: MusicGenerator | None = None,
    orchestrator: ImageTransformOrchestrator | None = None,
    job_runner: JobDispatcher | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Services are built eagerly so the app also works without lifespan
    # (e.g. under httpx.ASGITransport)
    store = job_store or build_job_store(settings)
    orchestrator = orchestrator or ImageTransformOrchestrator.from_settings(settings)
    generator = music_generator or SunoAutomation.from_settings(settings)
    pipelines = build_pipelines(
        generator=generator, orchestrator=orchestrator, session_factory=SessionLocal,
    )
    app.state.settings = settings
    app.state.job_store = store
    app.state.orchestrator = orchestrator
    app.state.job_runner = job_runner or build_job_runner(settings, store, pipelines)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # UTF-8 Content-Type enforcement for text-based responses
    @app.middleware("http")
    async def enforce_utf8_charset(request: Request, call_next):
        response = await call_next(request)
        ct = response.headers.get("content-type", "")
        if ("charset" not in ct) and any(
            t in ct for t in ("application/json", "text/html", "text/plain")
        ):
            response.headers["content-type"] = ct + "; charset=utf-8"
        return response

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)},
            media_type="application/json; charset=utf-8",
        )

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="healthy",
            version=settings.APP_VERSION,
            timestamp=datetime.now(timezone.utc),
        )

    # Mount API routes
    app.include_router(v1_router)

    # Generated audio and uploaded images
    app.mount("/uploads", StaticFiles(directory=settings.upload_path), name="uploads")

    return app


app = create_app()
