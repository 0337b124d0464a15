import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.providers.base import PredictionState, ProviderError, StagingInput
from app.providers.decor8 import Decor8Provider, map_design_style, map_room_type
from app.providers.gemini import MASK_INSTRUCTION, GeminiProvider
from app.providers.replicate import ReplicateProvider
from conftest import MASK_BYTES, PNG_BYTES, STAGED_BYTES


def staging_input(**overrides) -> StagingInput:
    values = dict(
        image_bytes=PNG_BYTES,
        mime_type="image/png",
        room_type="bedroom-kids",
        style="mid-century",
        job_id="job-1",
    )
    values.update(overrides)
    return StagingInput(**values)


class TestDecor8Provider:
    @pytest.mark.asyncio
    async def test_stage_image_downloads_generated_design(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/generate_designs_for_room":
                seen["body"] = json.loads(request.content)
                seen["auth"] = request.headers["authorization"]
                return httpx.Response(
                    200,
                    json={"info": {"images": [{"url": "https://cdn.decor8.ai/out.jpg"}]}},
                )
            assert request.url.host == "cdn.decor8.ai"
            return httpx.Response(200, content=STAGED_BYTES)

        provider = Decor8Provider("d8-key", transport=httpx.MockTransport(handler))
        result = await provider.stage_image_sync(staging_input())

        assert result.success is True
        assert result.image_data == STAGED_BYTES

    @pytest.mark.asyncio
    async def test_mask_is_sent_after_the_photo(self):
        parts = [
            SimpleNamespace(
                inline_data=SimpleNamespace(data=STAGED_BYTES, mime_type="image/png"),
                text=None,
            ),
        ]
        client = self.build_client(parts)
        provider = GeminiProvider("g-key", "image-model", client=client)

        await provider.stage_image_sync(staging_input(mask_bytes=MASK_BYTES))

        contents = client.aio.models.generate_content.call_args.kwargs["contents"]
        assert len(contents) == 3
        assert contents[1].inline_data.data == MASK_BYTES
        assert MASK_INSTRUCTION in contents[2]
        assert result.mime_type == "image/jpeg"
        assert seen["auth"] == "Bearer d8-key"
        assert seen["body"]["room_type"] == "kidsroom"
        assert seen["body"]["design_style"] == "midcenturymodern"
        assert seen["body"]["input_image_url"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_prefers_public_image_url(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                seen["body"] = json.loads(request.content)
                return httpx.Response(
                    200, json={"info": {"images": [{"url": "https://cdn.decor8.ai/a.png"}]}}
                )
            return httpx.Response(200, content=STAGED_BYTES)

        provider = Decor8Provider("d8-key", transport=httpx.MockTransport(handler))
        await provider.stage_image_sync(
            staging_input(image_url="https://bucket.s3.amazonaws.com/original.png")
        )

        assert seen["body"]["input_image_url"] == "https://bucket.s3.amazonaws.com/original.png"

    @pytest.mark.asyncio
    async def test_api_error_becomes_failed_result(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        provider = Decor8Provider("d8-key", transport=transport)

        result = await provider.stage_image_sync(staging_input())

        assert result.success is False
        assert "500" in result.error

    @pytest.mark.asyncio
    async def test_health_reports_rate_limit(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(429))
        health = await Decor8Provider("d8-key", transport=transport).check_health()

        assert health.available is False
        assert health.rate_limited is True

    @pytest.mark.asyncio
    async def test_health_without_key_is_unavailable(self):
        health = await Decor8Provider(None).check_health()
        assert health.available is False

    def test_unknown_room_and_style_map_to_defaults(self):
        assert map_room_type("attic") == "livingroom"
        assert map_design_style("baroque") == "modern"


class TestReplicateProvider:
    @pytest.mark.asyncio
    async def test_submit_returns_prediction_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "pred-42", "status": "starting"})

        provider = ReplicateProvider(
            "r8-token", "model:version", transport=httpx.MockTransport(handler)
        )
        prediction_id = await provider.stage_image_async(staging_input())

        assert prediction_id == "pred-42"
        assert seen["body"]["version"] == "model:version"
        assert seen["body"]["input"]["negative_prompt"]
        assert "mask" not in seen["body"]["input"]

    @pytest.mark.asyncio
    async def test_submit_forwards_mask_as_data_url(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "pred-43", "status": "starting"})

        provider = ReplicateProvider("r8-token", "v", transport=httpx.MockTransport(handler))
        await provider.stage_image_async(staging_input(mask_bytes=MASK_BYTES))

        assert seen["body"]["input"]["mask"] == (
            "data:image/png;base64," + base64.b64encode(MASK_BYTES).decode("ascii")
        )

    @pytest.mark.asyncio
    async def test_submit_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(422, text="bad input"))
        provider = ReplicateProvider("r8-token", "v", transport=transport)

        with pytest.raises(ProviderError):
            await provider.stage_image_async(staging_input())

    @pytest.mark.asyncio
    async def test_succeeded_string_output_is_wrapped(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200, json={"status": "succeeded", "output": "https://replicate.delivery/o.png"}
            )
        )
        provider = ReplicateProvider("r8-token", "v", transport=transport)

        prediction = await provider.get_prediction_status("pred-42")

        assert prediction.status == PredictionState.SUCCEEDED
        assert prediction.output_url == "https://replicate.delivery/o.png"

    @pytest.mark.asyncio
    async def test_canceled_prediction_is_failed_with_message(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": "canceled", "output": None})
        )
        provider = ReplicateProvider("r8-token", "v", transport=transport)

        prediction = await provider.get_prediction_status("pred-42")

        assert prediction.status == PredictionState.FAILED
        assert prediction.error == "Prediction canceled"

    @pytest.mark.asyncio
    async def test_starting_prediction_is_processing(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": "starting"})
        )
        provider = ReplicateProvider("r8-token", "v", transport=transport)

        prediction = await provider.get_prediction_status("pred-42")

        assert prediction.status == PredictionState.PROCESSING
        assert prediction.output_url is None


class TestGeminiProvider:
    def build_client(self, parts):
        response = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))]
        )
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=response)
        return client

    @pytest.mark.asyncio
    async def test_returns_inline_image(self):
        parts = [
            SimpleNamespace(inline_data=None, text="Here is your room"),
            SimpleNamespace(
                inline_data=SimpleNamespace(data=STAGED_BYTES, mime_type="image/png"),
                text=None,
            ),
        ]
        provider = GeminiProvider("g-key", "image-model", client=self.build_client(parts))

        result = await provider.stage_image_sync(staging_input())

        assert result.success is True
        assert result.image_data == STAGED_BYTES

    @pytest.mark.asyncio
    async def test_text_only_response_is_failure(self):
        parts = [SimpleNamespace(inline_data=None, text="I cannot edit this image")]
        provider = GeminiProvider("g-key", "image-model", client=self.build_client(parts))

        result = await provider.stage_image_sync(staging_input())

        assert result.success is False
        assert result.error == "I cannot edit this image"

    @pytest.mark.asyncio
    async def test_model_error_is_failure(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("quota"))
        provider = GeminiProvider("g-key", "image-model", client=client)

        result = await provider.stage_image_sync(staging_input())

        assert result.success is False

    @pytest.mark.asyncio
    async def test_health_depends_on_key(self):
        assert (await GeminiProvider(None, "m").check_health()).available is False
        assert (await GeminiProvider("g-key", "m").check_health()).available is True
