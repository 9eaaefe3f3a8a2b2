"""Aggregate API v1 router: mounts all sub-routers."""
from fastapi import APIRouter
from createtree.api.v1 import gallery, image, jobs, music_jobs, placeholder, websocket

router = APIRouter(prefix="/api/v1")

router.include_router(music_jobs.router, tags=["Music"])
router.include_router(image.router, tags=["Image"])
router.include_router(jobs.router, tags=["Jobs"])
router.include_router(gallery.router, tags=["Gallery"])
router.include_router(placeholder.router, tags=["Placeholder"])
router.include_router(websocket.router, tags=["WebSocket"])
