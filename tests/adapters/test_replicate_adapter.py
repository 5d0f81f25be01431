"""Tests for the Replicate adapter using httpx.MockTransport."""
import json

import httpx
import pytest

from app.adapters.replicate import ReplicateAdapter
from app.errors import (
    UpstreamAuthError,
    UpstreamBadResponseError,
    UpstreamRejectedInputError,
    UpstreamUnavailableError,
)
from app.providers.models import resolve

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
DELIVERY_URL = "https://replicate.delivery/pbxt/abc/out-0.webp"


def make_adapter(handler, api_key="r8_test", max_wait=5.0):
    return ReplicateAdapter(
        api_key=api_key,
        base_url="https://api.replicate.com",
        timeout=5,
        transport=httpx.MockTransport(handler),
        poll_interval=0,
        max_wait=max_wait,
    )


class PredictionServer:
    """Scripted Replicate API: a create response followed by poll responses."""

    def __init__(self, polls, output=None, image=PNG, content_type="image/webp"):
        self.polls = list(polls)
        self.output = output if output is not None else [DELIVERY_URL]
        self.image = image
        self.content_type = content_type
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "replicate.delivery":
            return httpx.Response(200, content=self.image, headers={"content-type": self.content_type})
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-1", "status": "starting"})
        status = self.polls.pop(0) if self.polls else "processing"
        body = {"id": "pred-1", "status": status, "metrics": {"predict_time": 1.2}}
        if status == "succeeded":
            body["output"] = self.output
        if status == "failed":
            body["error"] = "NSFW content detected"
        return httpx.Response(200, json=body)


class TestReplicateGenerate:

    @pytest.mark.asyncio
    async def test_polls_until_succeeded(self):
        """Prediction is polled to completion and the output downloaded."""
        server = PredictionServer(polls=["processing", "processing", "succeeded"])
        adapter = make_adapter(server)

        result = await adapter.generate("a red fox", resolve("flux-schnell"), "16:9")

        assert result.image_bytes == PNG
        # Delivery said webp; bytes say PNG
        assert result.mime_type == "image/png"
        assert result.extension == "png"
        assert result.diagnostics["prediction_id"] == "pred-1"

        polls = [r for r in server.requests if r.method == "GET" and r.url.host == "api.replicate.com"]
        assert len(polls) == 3

    @pytest.mark.asyncio
    async def test_create_request_shape(self):
        server = PredictionServer(polls=["succeeded"])
        adapter = make_adapter(server)

        await adapter.generate("a red fox", resolve("flux-schnell"), "16:9")

        create = server.requests[0]
        assert create.url.path == "/v1/models/black-forest-labs/flux-schnell/predictions"
        assert create.headers["Authorization"] == "Bearer r8_test"
        body = json.loads(create.content)
        assert body["input"]["prompt"] == "a red fox"
        assert body["input"]["aspect_ratio"] == "16:9"
        assert body["input"]["output_format"] == "webp"

    @pytest.mark.asyncio
    async def test_download_has_no_credentials(self):
        server = PredictionServer(polls=["succeeded"])
        adapter = make_adapter(server)

        await adapter.generate("a red fox", resolve("flux-schnell"), "1:1")

        download = [r for r in server.requests if r.url.host == "replicate.delivery"][0]
        assert "Authorization" not in download.headers

    @pytest.mark.asyncio
    async def test_versioned_model_uses_predictions_endpoint(self):
        """Pinned versions post to /v1/predictions with width/height input."""
        server = PredictionServer(polls=["succeeded"])
        adapter = make_adapter(server)

        await adapter.generate("portrait", resolve("lcm"), "9:16")

        create = server.requests[0]
        assert create.url.path == "/v1/predictions"
        body = json.loads(create.content)
        assert body["version"].startswith("683d19dc")
        assert body["input"]["width"] == 768
        assert body["input"]["height"] == 1344
        assert "aspect_ratio" not in body["input"]

    @pytest.mark.asyncio
    async def test_string_output(self):
        server = PredictionServer(polls=["succeeded"], output=DELIVERY_URL)
        adapter = make_adapter(server)

        result = await adapter.generate("x", resolve("recraft-v3"), "1:1")
        assert result.diagnostics["output_url"] == DELIVERY_URL

    @pytest.mark.asyncio
    async def test_failed_prediction(self):
        server = PredictionServer(polls=["failed"])
        adapter = make_adapter(server)

        with pytest.raises(UpstreamRejectedInputError) as exc_info:
            await adapter.generate("x", resolve("flux-schnell"), "1:1")
        assert "NSFW" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_canceled_prediction(self):
        server = PredictionServer(polls=["canceled"])
        adapter = make_adapter(server)

        with pytest.raises(UpstreamUnavailableError):
            await adapter.generate("x", resolve("flux-schnell"), "1:1")

    @pytest.mark.asyncio
    async def test_poll_deadline_exhausted(self):
        """A prediction that never finishes is upstream-unavailable after max_wait."""
        server = PredictionServer(polls=[])
        adapter = make_adapter(server, max_wait=3)

        with pytest.raises(UpstreamUnavailableError):
            await adapter.generate("x", resolve("flux-schnell"), "1:1")

        polls = [r for r in server.requests if r.method == "GET"]
        assert len(polls) == 3

    @pytest.mark.asyncio
    async def test_empty_output(self):
        server = PredictionServer(polls=["succeeded"], output=[])
        adapter = make_adapter(server)

        with pytest.raises(UpstreamBadResponseError):
            await adapter.generate("x", resolve("flux-schnell"), "1:1")

    @pytest.mark.asyncio
    async def test_missing_token(self):
        adapter = make_adapter(PredictionServer(polls=[]), api_key="")

        with pytest.raises(UpstreamAuthError):
            await adapter.generate("x", resolve("flux-schnell"), "1:1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, UpstreamAuthError),
        (422, UpstreamRejectedInputError),
        (429, UpstreamUnavailableError),
        (503, UpstreamUnavailableError),
        (418, UpstreamBadResponseError),
    ])
    async def test_create_status_mapping(self, status, error):
        def handler(request):
            return httpx.Response(status, json={"detail": "nope"})

        with pytest.raises(error) as exc_info:
            await make_adapter(handler).generate("x", resolve("flux-schnell"), "1:1")
        assert exc_info.value.provider == "replicate"
        assert exc_info.value.context["status_code"] == status

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamUnavailableError):
            await make_adapter(handler).generate("x", resolve("flux-schnell"), "1:1")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamUnavailableError):
            await make_adapter(handler).generate("x", resolve("flux-schnell"), "1:1")

    @pytest.mark.asyncio
    async def test_broken_delivery_link(self):
        server = PredictionServer(polls=["succeeded"])

        def handler(request):
            if request.url.host == "replicate.delivery":
                return httpx.Response(404)
            return server(request)

        with pytest.raises(UpstreamBadResponseError):
            await make_adapter(handler).generate("x", resolve("flux-schnell"), "1:1")


class TestReplicateEdit:

    @pytest.mark.asyncio
    async def test_img2img_input(self):
        server = PredictionServer(polls=["succeeded"])
        adapter = make_adapter(server)

        result = await adapter.edit(
            "make it blue", resolve("flux-schnell"), "1:1", "https://example.com/src.png", 0.6
        )

        body = json.loads(server.requests[0].content)
        assert body["input"]["image"] == "https://example.com/src.png"
        assert body["input"]["prompt_strength"] == 0.6
        assert result.mime_type == "image/png"

    def test_can_edit(self):
        adapter = make_adapter(PredictionServer(polls=[]))
        assert adapter.can_edit(resolve("flux-schnell"))
