"""Shared FastAPI dependencies backed by objects built in ``create_app``."""
from fastapi import Request

from createtree.services.image_orchestrator import ImageTransformOrchestrator
from createtree.services.job_runner import JobDispatcher
from createtree.services.job_store import JobStore


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_job_runner(request: Request) -> JobDispatcher:
    return request.app.state.job_runner


def get_orchestrator(request: Request) -> ImageTransformOrchestrator:
    return request.app.state.orchestrator
