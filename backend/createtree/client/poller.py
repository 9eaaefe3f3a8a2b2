"""Async client that submits generation jobs and polls them to completion.

Used by scripts and tests; the web client follows the same protocol:
submit, then ``GET /jobs/{id}/status`` on a fixed interval until the job
leaves ``processing`` or the overall deadline passes.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from createtree.schemas.common import ImageModel

logger = logging.getLogger(__name__)

StatusCallback = Callable[[dict[str, Any]], None]


class PollStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class PollResult:
    status: PollStatus
    job_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    message: str | None = None
    polls: int = 0

    @property
    def ok(self) -> bool:
        return self.status is PollStatus.COMPLETED

    @property
    def audio_url(self) -> str | None:
        return self.payload.get("audioUrl")

    @property
    def image_url(self) -> str | None:
        return self.payload.get("imageUrl")

    @property
    def duration(self) -> int | None:
        return self.payload.get("duration")


_TERMINAL = {
    "completed": PollStatus.COMPLETED,
    "failed": PollStatus.FAILED,
    "cancelled": PollStatus.CANCELLED,
}


class JobPoller:
    """Submit jobs to the generation API and wait for their outcome.

    ``timeout=None`` polls for as long as the job stays ``processing``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        interval: float = 3.0,
        timeout: float | None = 600.0,
        api_prefix: str = "/api/v1",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.interval = interval
        self.timeout = timeout
        self.api_prefix = api_prefix.rstrip("/")
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings) -> "JobPoller":
        return cls(
            client,
            interval=settings.POLL_INTERVAL_SECONDS,
            timeout=settings.POLL_TIMEOUT_SECONDS or None,
        )

    # ── Submission ─────────────────────────────────────────────────────

    async def submit_music(self, params: dict[str, Any]) -> str:
        resp = await self.client.post(f"{self.api_prefix}/music-jobs", json=params)
        resp.raise_for_status()
        return resp.json()["jobId"]

    async def submit_image(
        self,
        image: bytes,
        style: str,
        *,
        filename: str = "photo.png",
        prompt: str | None = None,
        model: ImageModel | None = None,
    ) -> str:
        data = {"style": style}
        if prompt:
            data["prompt"] = prompt
        if model:
            data["model"] = model.value
        resp = await self.client.post(
            f"{self.api_prefix}/image-jobs",
            data=data,
            files={"image": (filename, image, "application/octet-stream")},
        )
        resp.raise_for_status()
        return resp.json()["jobId"]

    async def cancel(self, job_id: str) -> bool:
        resp = await self.client.post(f"{self.api_prefix}/jobs/{job_id}/cancel")
        return resp.status_code == 200

    # ── Polling ────────────────────────────────────────────────────────

    async def poll(self, job_id: str, on_update: StatusCallback | None = None) -> PollResult:
        """Poll until the job is terminal, missing, unreachable or past the deadline."""
        deadline = self._clock() + self.timeout if self.timeout is not None else None
        polls = 0
        last: dict[str, Any] = {}

        while True:
            polls += 1
            try:
                resp = await self.client.get(f"{self.api_prefix}/jobs/{job_id}/status")
            except httpx.HTTPError as exc:
                logger.warning("Polling job %s failed: %s", job_id[:8], exc)
                return PollResult(PollStatus.ERROR, job_id, last, str(exc), polls)

            if resp.status_code == 404:
                return PollResult(PollStatus.NOT_FOUND, job_id, last, "Job not found", polls)
            if not resp.is_success:
                return PollResult(
                    PollStatus.ERROR, job_id, last, f"Status request failed: HTTP {resp.status_code}", polls,
                )

            try:
                payload = resp.json()
            except ValueError as exc:
                logger.warning("Job %s status was not JSON: %s", job_id[:8], exc)
                payload = None
            if not isinstance(payload, dict):
                return PollResult(PollStatus.ERROR, job_id, last, "Status response was not valid JSON", polls)
            last = payload
            if on_update is not None:
                on_update(last)

            outcome = _TERMINAL.get(last.get("status"))
            if outcome is not None:
                message = last.get("message") if outcome is not PollStatus.COMPLETED else None
                return PollResult(outcome, job_id, last, message, polls)

            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return PollResult(
                        PollStatus.TIMEOUT, job_id, last,
                        f"Job still processing after {self.timeout:.0f} seconds", polls,
                    )
                await self._sleep(min(self.interval, remaining))
            else:
                await self._sleep(self.interval)

    # ── Submit + poll ──────────────────────────────────────────────────

    async def run_music(self, params: dict[str, Any], on_update: StatusCallback | None = None) -> PollResult:
        try:
            job_id = await self.submit_music(params)
        except httpx.HTTPError as exc:
            return PollResult(PollStatus.ERROR, None, message=str(exc))
        return await self.poll(job_id, on_update)

    async def run_image(
        self,
        image: bytes,
        style: str,
        *,
        filename: str = "photo.png",
        prompt: str | None = None,
        model: ImageModel | None = None,
        on_update: StatusCallback | None = None,
    ) -> PollResult:
        try:
            job_id = await self.submit_image(image, style, filename=filename, prompt=prompt, model=model)
        except httpx.HTTPError as exc:
            return PollResult(PollStatus.ERROR, None, message=str(exc))
        return await self.poll(job_id, on_update)
