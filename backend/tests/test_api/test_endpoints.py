"""End-to-end tests of the HTTP API with the in-process job runner."""
import asyncio
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from createtree.api.v1 import websocket as websocket_module
from createtree.client.poller import JobPoller, PollStatus
from createtree.main import create_app
from createtree.schemas.common import JobKind, JobStatus
from createtree.services.image_orchestrator import (
    SERVICE_UNAVAILABLE_URL,
    ImageTransformOrchestrator,
    ProviderCredentials,
)
from createtree.services.job_store import FileJobStore


class HangingGenerator:
    async def generate(self, request, job_id, progress=None):
        if progress:
            progress("Composing music", 30)
        await asyncio.Event().wait()


class SilentPubSub:
    """Pub/sub that never delivers; runs hooks on subscribe and on each idle read."""

    def __init__(self, on_subscribe=None, on_idle=None):
        self.on_subscribe = on_subscribe
        self.on_idle = on_idle

    async def subscribe(self, channel):
        if self.on_subscribe:
            self.on_subscribe()

    async def get_message(self, **kwargs):
        if self.on_idle:
            self.on_idle()
        return None

    async def unsubscribe(self, channel):
        pass


class FakeRedis:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    def pubsub(self):
        return self._pubsub

    async def aclose(self):
        pass


@pytest.fixture
def job_store(tmp_path):
    return FileJobStore(tmp_path / "jobs")


@pytest.fixture
def invalid_key_orchestrator():
    return ImageTransformOrchestrator(ProviderCredentials("invalid-key"))


@pytest.fixture
def app(job_store, fake_generator, invalid_key_orchestrator):
    return create_app(
        job_store=job_store,
        music_generator=fake_generator,
        orchestrator=invalid_key_orchestrator,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


def run_with_poller(app, scenario):
    """Run *scenario(poller, http)* on one event loop shared with the app's jobs."""
    async def go():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            poller = JobPoller(http, interval=0.01, timeout=5.0)
            return await scenario(poller, http)

    return asyncio.run(go())


class TestMusicJobs:
    def test_end_to_end_music_job(self, app):
        async def scenario(poller, http):
            return await poller.run_music({"prompt": "a calm lullaby", "duration": "120"})

        result = run_with_poller(app, scenario)
        assert result.status is PollStatus.COMPLETED
        assert result.audio_url
        assert result.duration == 120
        assert result.payload["progress"] == 100

    def test_submit_returns_202_with_job_id(self, app, job_store):
        async def scenario(poller, http):
            resp = await http.post("/api/v1/music-jobs", json={"prompt": "a calm lullaby", "vocalGender": "female"})
            await asyncio.sleep(0.05)
            return resp

        resp = run_with_poller(app, scenario)
        assert resp.status_code == 202
        job_id = resp.json()["jobId"]
        record = job_store.read(job_id)
        assert record.kind is JobKind.MUSIC
        assert record.params["vocal_gender"] == "female"

    def test_short_prompt_rejected(self, client):
        resp = client.post("/api/v1/music-jobs", json={"prompt": "hi"})
        assert resp.status_code == 422

    def test_unknown_duration_rejected(self, client):
        resp = client.post("/api/v1/music-jobs", json={"prompt": "a calm lullaby", "duration": "75"})
        assert resp.status_code == 422

    def test_cancel_running_job(self, job_store, invalid_key_orchestrator):
        app = create_app(
            job_store=job_store,
            music_generator=HangingGenerator(),
            orchestrator=invalid_key_orchestrator,
        )

        async def scenario(poller, http):
            job_id = await poller.submit_music({"prompt": "a calm lullaby"})
            await asyncio.sleep(0.05)
            first = await http.post(f"/api/v1/jobs/{job_id}/cancel")
            second = await http.post(f"/api/v1/jobs/{job_id}/cancel")
            polled = await poller.poll(job_id)
            return first, second, polled

        first, second, polled = run_with_poller(app, scenario)
        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409
        assert polled.status is PollStatus.CANCELLED


class TestImageJobs:
    def test_invalid_credential_yields_placeholder(self, app, png_bytes):
        async def scenario(poller, http):
            return await poller.run_image(png_bytes, "watercolor")

        result = run_with_poller(app, scenario)
        assert result.status is PollStatus.FAILED
        assert result.image_url == SERVICE_UNAVAILABLE_URL
        assert result.payload["outcome"] == "unavailable"

    def test_sync_transform_returns_placeholder(self, client, png_bytes):
        resp = client.post(
            "/api/v1/image/transform",
            data={"style": "ghibli"},
            files={"image": ("photo.png", png_bytes, "image/png")},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["imageUrl"] == SERVICE_UNAVAILABLE_URL
        assert body["outcome"] == "unavailable"
        assert body["style"] == "ghibli"

    def test_unsupported_upload_type(self, client):
        resp = client.post(
            "/api/v1/image/transform",
            data={"style": "ghibli"},
            files={"image": ("notes.txt", b"hello", "text/plain")},
        )
        assert resp.status_code == 400

    def test_unknown_model_rejected(self, client, png_bytes):
        resp = client.post(
            "/api/v1/image/transform",
            data={"style": "ghibli", "model": "midjourney"},
            files={"image": ("photo.png", png_bytes, "image/png")},
        )
        assert resp.status_code == 422


class TestJobStatus:
    def test_unknown_job_is_404(self, client):
        assert client.get("/api/v1/jobs/does-not-exist/status").status_code == 404
        assert client.post("/api/v1/jobs/does-not-exist/cancel").status_code == 404

    def test_status_reads_are_idempotent(self, client, job_store):
        record = job_store.create(JobKind.MUSIC, {"prompt": "a calm lullaby"})
        job_store.update(record.id, progress=40, message="Composing music")
        first = client.get(f"/api/v1/jobs/{record.id}/status").json()
        second = client.get(f"/api/v1/jobs/{record.id}/status").json()
        assert first == second
        assert first["status"] == "processing"
        assert first["progress"] == 40
        assert "audioUrl" not in first

    def test_list_jobs_filters(self, client, job_store):
        music = job_store.create(JobKind.MUSIC, {})
        image = job_store.create(JobKind.IMAGE, {})
        job_store.update(image.id, status=JobStatus.FAILED, error="boom")

        ids = [j["id"] for j in client.get("/api/v1/jobs", params={"kind": "music"}).json()]
        assert ids == [music.id]
        failed = client.get("/api/v1/jobs", params={"status": "failed"}).json()
        assert [j["id"] for j in failed] == [image.id]
        assert failed[0]["error"] == "boom"


class TestMisc:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["version"] == "1.0.0"

    def test_placeholder_svg(self, client):
        resp = client.get("/api/v1/placeholder", params={"style": "ghibli", "text": "Loading"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("image/svg+xml")
        assert "no-store" in resp.headers["cache-control"]
        assert "#8DB1AB" in resp.text
        assert "Loading" in resp.text

    def test_placeholder_error_is_red(self, client):
        resp = client.get("/api/v1/placeholder", params={"style": "ghibli", "error": "true"})
        assert "#F07167" in resp.text

    def test_gallery_listings(self, client):
        assert isinstance(client.get("/api/v1/music").json(), list)
        assert isinstance(client.get("/api/v1/images", params={"include_failed": True}).json(), list)

    def test_websocket_sends_terminal_snapshot(self, client, job_store):
        record = job_store.create(JobKind.MUSIC, {})
        job_store.update(record.id, status=JobStatus.COMPLETED, result={"audio_url": "/a.mp3"})
        with client.websocket_connect(f"/api/v1/ws/jobs/{record.id}") as ws:
            data = ws.receive_json()
        assert data["status"] == "completed"
        assert data["audioUrl"] == "/a.mp3"

    def test_websocket_unknown_job(self, client):
        with client.websocket_connect("/api/v1/ws/jobs/missing") as ws:
            assert ws.receive_json() == {"error": "Job not found"}


class TestWebSocketRedis:
    @pytest.fixture
    def use_pubsub(self, monkeypatch):
        def install(pubsub):
            monkeypatch.setattr(websocket_module, "get_settings", lambda: SimpleNamespace(REDIS_URL="redis://test"))
            monkeypatch.setattr(websocket_module.aioredis, "from_url", lambda url: FakeRedis(pubsub))
        return install

    def test_finish_before_subscribe_is_delivered(self, client, job_store, use_pubsub):
        record = job_store.create(JobKind.MUSIC, {})

        def finish():
            job_store.update(record.id, status=JobStatus.COMPLETED, result={"audio_url": "/a.mp3"})

        use_pubsub(SilentPubSub(on_subscribe=finish))
        with client.websocket_connect(f"/api/v1/ws/jobs/{record.id}") as ws:
            data = ws.receive_json()
        assert data["status"] == "completed"
        assert data["audioUrl"] == "/a.mp3"

    def test_missed_publish_is_recovered_from_store(self, client, job_store, use_pubsub):
        record = job_store.create(JobKind.MUSIC, {})

        def finish():
            if job_store.read(record.id).status is JobStatus.PROCESSING:
                job_store.update(record.id, status=JobStatus.FAILED, error="Provider down")

        use_pubsub(SilentPubSub(on_idle=finish))
        with client.websocket_connect(f"/api/v1/ws/jobs/{record.id}") as ws:
            first = ws.receive_json()
            last = ws.receive_json()
        assert first["status"] == "processing"
        assert last["status"] == "failed"
        assert last["message"] == "Provider down"
