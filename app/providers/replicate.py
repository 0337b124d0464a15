import base64
from typing import Optional

import httpx

from app.logger.logger import logger
from app.providers.base import (
    AsyncCapable,
    PredictionState,
    PredictionStatus,
    ProviderError,
    ProviderHealth,
    StagingInput,
)
from app.providers.prompts import NEGATIVE_PROMPT, build_keyword_prompt

# replicate prediction states collapsed onto the three we track
REPLICATE_STATUS_MAP = {
    "starting": PredictionState.PROCESSING,
    "processing": PredictionState.PROCESSING,
    "succeeded": PredictionState.SUCCEEDED,
    "failed": PredictionState.FAILED,
    "canceled": PredictionState.FAILED,
}

DEFAULT_CONDITIONING_SCALE = 0.5


class ReplicateProvider(AsyncCapable):
    provider_id = "stable-diffusion"
    display_name = "Stable Diffusion + ControlNet"
    base_url = "https://api.replicate.com/v1"

    def __init__(
        self,
        api_token: Optional[str],
        model_version: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token
        self.model_version = model_version
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_token}"},
        )

    def build_prompt(self, room_type: str, style: str) -> str:
        return build_keyword_prompt(room_type, style)

    def build_negative_prompt(self) -> str:
        return NEGATIVE_PROMPT

    async def stage_image_async(self, staging_input: StagingInput) -> str:
        encoded = base64.b64encode(staging_input.image_bytes).decode("ascii")
        body = {
            "version": self.model_version,
            "input": {
                "prompt": self.build_prompt(staging_input.room_type, staging_input.style),
                "negative_prompt": self.build_negative_prompt(),
                "image": f"data:{staging_input.mime_type};base64,{encoded}",
                "num_inference_steps": 30,
                "guidance_scale": 7.5,
                "controlnet_conditioning_scale": DEFAULT_CONDITIONING_SCALE,
            },
        }
        if staging_input.mask_bytes:
            mask = base64.b64encode(staging_input.mask_bytes).decode("ascii")
            body["input"]["mask"] = f"data:image/png;base64,{mask}"

        async with self._client() as client:
            response = await client.post("/predictions", json=body)

        if not response.is_success:
            raise ProviderError(
                f"Replicate API error: {response.status_code} - {response.text}"
            )

        prediction_id = response.json()["id"]
        logger.info(
            f"Replicate prediction {prediction_id} created for job {staging_input.job_id}"
        )
        return prediction_id

    async def get_prediction_status(self, prediction_id: str) -> PredictionStatus:
        async with self._client() as client:
            response = await client.get(f"/predictions/{prediction_id}")

        if not response.is_success:
            raise ProviderError(
                f"Failed to get prediction status: {response.status_code}"
            )

        data = response.json()
        status = REPLICATE_STATUS_MAP.get(data.get("status"), PredictionState.PROCESSING)
        output = data.get("output") or []
        if isinstance(output, str):
            output = [output]

        error = data.get("error")
        if status == PredictionState.FAILED and not error:
            error = f"Prediction {data.get('status')}"

        return PredictionStatus(status=status, output=output, error=error)

    async def check_health(self) -> ProviderHealth:
        if not self.api_token:
            return ProviderHealth(
                provider=self.provider_id,
                available=False,
                error_message="REPLICATE_API_TOKEN not configured",
            )

        try:
            async with self._client() as client:
                response = await client.get("/account")
        except httpx.HTTPError as e:
            return ProviderHealth(
                provider=self.provider_id, available=False, error_message=str(e)
            )

        if response.status_code == 429:
            return ProviderHealth(
                provider=self.provider_id,
                available=False,
                rate_limited=True,
                error_message="Rate limited",
            )
        ok = response.is_success
        return ProviderHealth(
            provider=self.provider_id,
            available=ok,
            error_message=None if ok else f"HTTP {response.status_code}",
        )

    def estimated_processing_time(self) -> int:
        return 30
