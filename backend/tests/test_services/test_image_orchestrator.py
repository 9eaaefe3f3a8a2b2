"""Tests for the image transform fallback chain."""
import asyncio
import json

import httpx
import pytest

from createtree.schemas.common import ImageModel, TransformOutcome
from createtree.services.image_orchestrator import (
    SAFETY_FILTER_URL,
    SERVICE_UNAVAILABLE_URL,
    ImageTransformOrchestrator,
    ProviderCredentials,
    is_policy_rejection,
)

PRIMARY_URL = "https://images.example/primary.png"
SECONDARY_URL = "https://images.example/secondary.png"

POLICY_ERROR = {
    "error": {
        "message": "Your request was rejected as a result of our safety system.",
        "type": "invalid_request_error",
        "code": "content_policy_violation",
    }
}
SERVER_ERROR = {"error": {"message": "The server had an error", "type": "server_error"}}


def ok(url):
    return httpx.Response(200, json={"data": [{"url": url}]})


def route(edits=None, generations=None):
    """Handler answering each endpoint with a fixed response (or raising)."""
    def handler(request):
        target = edits if request.url.path.endswith("/images/edits") else generations
        if isinstance(target, Exception):
            raise target
        return target
    return handler


def run_transform(handler, image, *, key="sk-test-key", style="watercolor", **kwargs):
    calls = []

    def recording(request):
        calls.append(request)
        return handler(request)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as client:
            orchestrator = ImageTransformOrchestrator(ProviderCredentials(key), client=client)
            return await orchestrator.transform(image, style, **kwargs)

    return asyncio.run(go()), calls


class TestFallbackChain:
    def test_primary_success(self, png_bytes):
        result, calls = run_transform(route(edits=ok(PRIMARY_URL)), png_bytes)
        assert result.url == PRIMARY_URL
        assert result.outcome is TransformOutcome.SUCCESS
        assert result.provider is ImageModel.GPT_IMAGE_1
        assert len(calls) == 1
        assert calls[0].url.path == "/v1/images/edits"
        assert calls[0].headers["Authorization"] == "Bearer sk-test-key"

    def test_primary_http_error_falls_back(self, png_bytes):
        handler = route(edits=httpx.Response(500, json=SERVER_ERROR), generations=ok(SECONDARY_URL))
        result, calls = run_transform(handler, png_bytes)
        assert result.url == SECONDARY_URL
        assert result.provider is ImageModel.DALLE_3
        assert [c.url.path for c in calls] == ["/v1/images/edits", "/v1/images/generations"]
        body = json.loads(calls[1].content)
        assert body["model"] == "dall-e-3"
        assert body["response_format"] == "url"

    def test_primary_without_url_falls_back(self, png_bytes):
        handler = route(edits=httpx.Response(200, json={"data": []}), generations=ok(SECONDARY_URL))
        result, calls = run_transform(handler, png_bytes)
        assert result.url == SECONDARY_URL
        assert len(calls) == 2

    def test_primary_transport_error_falls_back(self, png_bytes):
        handler = route(edits=httpx.ConnectError("connection refused"), generations=ok(SECONDARY_URL))
        result, calls = run_transform(handler, png_bytes)
        assert result.url == SECONDARY_URL
        assert len(calls) == 2

    def test_both_fail_returns_unavailable(self, png_bytes):
        handler = route(
            edits=httpx.Response(500, json=SERVER_ERROR),
            generations=httpx.Response(503, text="upstream unavailable"),
        )
        result, calls = run_transform(handler, png_bytes)
        assert result.url == SERVICE_UNAVAILABLE_URL
        assert result.outcome is TransformOutcome.UNAVAILABLE
        assert len(calls) == 2
        assert "server had an error" in result.error

    def test_each_model_tried_at_most_once(self, png_bytes):
        handler = route(edits=httpx.Response(500, json=SERVER_ERROR), generations=httpx.Response(500, json=SERVER_ERROR))
        _, calls = run_transform(handler, png_bytes)
        paths = [c.url.path for c in calls]
        assert paths.count("/v1/images/edits") == 1
        assert paths.count("/v1/images/generations") == 1

    def test_preferred_model_goes_first(self, png_bytes):
        handler = route(edits=ok(PRIMARY_URL), generations=ok(SECONDARY_URL))
        result, calls = run_transform(handler, png_bytes, prefer=ImageModel.DALLE_3)
        assert result.url == SECONDARY_URL
        assert calls[0].url.path == "/v1/images/generations"

    def test_base64_result_becomes_data_url(self, png_bytes):
        handler = route(edits=httpx.Response(200, json={"data": [{"b64_json": "aGVsbG8="}]}))
        result, _ = run_transform(handler, png_bytes)
        assert result.url == "data:image/png;base64,aGVsbG8="

    def test_custom_prompt_overrides_style(self, png_bytes):
        handler = route(edits=httpx.Response(500, json=SERVER_ERROR), generations=ok(SECONDARY_URL))
        _, calls = run_transform(handler, png_bytes, custom_prompt="A {{mood}} portrait in {{style}}")
        body = json.loads(calls[1].content)
        assert body["prompt"] == "A happy portrait in watercolor"


class TestSafetyShortCircuit:
    def test_primary_policy_rejection_skips_fallback(self, png_bytes):
        handler = route(edits=httpx.Response(400, json=POLICY_ERROR), generations=ok(SECONDARY_URL))
        result, calls = run_transform(handler, png_bytes)
        assert result.url == SAFETY_FILTER_URL
        assert result.outcome is TransformOutcome.POLICY_REJECTED
        assert len(calls) == 1

    def test_secondary_policy_rejection(self, png_bytes):
        handler = route(
            edits=httpx.Response(500, json=SERVER_ERROR),
            generations=httpx.Response(400, json=POLICY_ERROR),
        )
        result, _ = run_transform(handler, png_bytes)
        assert result.url == SAFETY_FILTER_URL
        assert result.provider is ImageModel.DALLE_3

    def test_marker_in_raw_body(self, png_bytes):
        handler = route(edits=httpx.Response(400, text="Blocked: CONTENT_POLICY"))
        result, _ = run_transform(handler, png_bytes)
        assert result.url == SAFETY_FILTER_URL

    @pytest.mark.parametrize("text,expected", [
        ("rejected by the Safety system", True),
        ("code: content_policy_violation", True),
        ("Rate limit reached", False),
        ("", False),
    ])
    def test_is_policy_rejection(self, text, expected):
        assert is_policy_rejection(text) is expected


class TestCredentialGuard:
    @pytest.mark.parametrize("key", ["", "   ", "invalid-key", "sk-"])
    def test_bad_credential_makes_no_calls(self, png_bytes, key):
        result, calls = run_transform(route(edits=ok(PRIMARY_URL)), png_bytes, key=key)
        assert calls == []
        assert result.url == SERVICE_UNAVAILABLE_URL
        assert result.outcome is TransformOutcome.UNAVAILABLE

    def test_unavailable_url_is_fixed_literal(self, png_bytes):
        result, _ = run_transform(route(), png_bytes, key="not-a-key")
        assert result.url.startswith("https://placehold.co/1024x1024/A7C1E2/FFF?text=")

    def test_project_key_accepted(self):
        assert ProviderCredentials("sk-proj-abc").has_valid_openai_key is True


class TestInputValidation:
    def test_unreadable_image(self):
        result, calls = run_transform(route(edits=ok(PRIMARY_URL)), b"definitely not an image")
        assert result.outcome is TransformOutcome.INVALID_INPUT
        assert result.url == SERVICE_UNAVAILABLE_URL
        assert calls == []

    def test_empty_image(self):
        result, calls = run_transform(route(edits=ok(PRIMARY_URL)), b"")
        assert result.outcome is TransformOutcome.INVALID_INPUT
        assert calls == []
