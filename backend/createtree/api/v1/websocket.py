"""WebSocket endpoint for real-time job progress updates."""
from __future__ import annotations

import asyncio
import json
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from createtree.config import get_settings
from createtree.schemas.common import TERMINAL_STATUSES
from createtree.services.job_store import JobStore
from createtree.services.progress_tracker import status_payload

router = APIRouter()
logger = logging.getLogger(__name__)

_TERMINAL_VALUES = {s.value for s in TERMINAL_STATUSES}


@router.websocket("/ws/jobs/{job_id}")
async def job_progress_ws(websocket: WebSocket, job_id: str):
    """Stream status snapshots for one job until it reaches a terminal status.

    Subscribes to the Redis pub/sub channel ``job:{job_id}`` when Redis is
    configured, otherwise polls the job store.
    """
    await websocket.accept()
    store: JobStore = websocket.app.state.job_store

    if store.read(job_id) is None:
        await websocket.send_text(json.dumps({"error": "Job not found"}))
        await websocket.close()
        return

    settings = get_settings()
    try:
        if settings.REDIS_URL:
            await _stream_redis(websocket, store, job_id, settings.REDIS_URL)
        else:
            await _poll_store_fallback(websocket, store, job_id)
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for job %s", job_id)
    except Exception as e:
        logger.error("WebSocket error for job %s: %s", job_id, e)
    finally:
        try:
            await websocket.close()
        except Exception:
            pass


async def _send_snapshot(websocket: WebSocket, store: JobStore, job_id: str) -> bool:
    """Send the stored record. Returns True when streaming should stop."""
    record = store.read(job_id)
    if record is None:
        await websocket.send_text(json.dumps({"error": "Job not found"}))
        return True
    await websocket.send_text(json.dumps(status_payload(record)))
    return record.is_terminal


async def _stream_redis(websocket: WebSocket, store: JobStore, job_id: str, redis_url: str):
    r = aioredis.from_url(redis_url)
    pubsub = r.pubsub()
    # Subscribe before the first read so no publish falls in between
    await pubsub.subscribe(f"job:{job_id}")
    try:
        if await _send_snapshot(websocket, store, job_id):
            return
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message["type"] == "message":
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await websocket.send_text(data)
                try:
                    if json.loads(data).get("status") in _TERMINAL_VALUES:
                        break
                except json.JSONDecodeError:
                    pass
            else:
                record = store.read(job_id)
                if record is None or record.is_terminal:
                    await _send_snapshot(websocket, store, job_id)
                    break
                # Heartbeat to detect disconnection
                await websocket.send_text(json.dumps({"heartbeat": True}))
                await asyncio.sleep(1)
    finally:
        await pubsub.unsubscribe(f"job:{job_id}")
        await r.aclose()


async def _poll_store_fallback(websocket: WebSocket, store: JobStore, job_id: str, interval: float = 2.0):
    """Poll the job store when Redis is not configured."""
    last_sent = None
    while True:
        record = store.read(job_id)
        if record is None:
            await websocket.send_text(json.dumps({"error": "Job not found"}))
            break
        payload = status_payload(record)
        if payload != last_sent:
            await websocket.send_text(json.dumps(payload))
            last_sent = payload
        if record.is_terminal:
            break
        await asyncio.sleep(interval)
