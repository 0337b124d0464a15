from typing import Optional

from google import genai
from google.genai import types

from app.logger.logger import logger
from app.providers.base import (
    ProviderHealth,
    StagingInput,
    StagingResult,
    SyncCapable,
)
from app.providers.prompts import build_inpainting_prompt

MASK_INSTRUCTION = (
    "The second image is a mask. Only add furniture where the mask is white "
    "and leave every black area of the room exactly as it is."
)


class GeminiProvider(SyncCapable):
    provider_id = "gemini"
    display_name = "Google Gemini"

    def __init__(self, api_key: Optional[str], model_id: str, client=None):
        self.api_key = api_key
        self.model_id = model_id
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def build_prompt(self, room_type: str, style: str) -> str:
        return build_inpainting_prompt(room_type, style)

    async def stage_image_sync(self, staging_input: StagingInput) -> StagingResult:
        prompt = self.build_prompt(staging_input.room_type, staging_input.style)
        contents = [
            types.Part.from_bytes(
                data=staging_input.image_bytes, mime_type=staging_input.mime_type
            )
        ]
        if staging_input.mask_bytes:
            contents.append(
                types.Part.from_bytes(data=staging_input.mask_bytes, mime_type="image/png")
            )
            prompt = f"{prompt}\n\n{MASK_INSTRUCTION}"
        contents.append(prompt)

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_id,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE", "TEXT"],
                ),
            )
        except Exception as e:
            logger.error(f"Gemini image model error for job {staging_input.job_id}: {e}")
            return StagingResult(
                success=False,
                error="Image generation is not available. Please try again later.",
            )

        text_parts = []
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts or []:
                if part.inline_data and part.inline_data.data:
                    return StagingResult(
                        success=True,
                        image_data=part.inline_data.data,
                        mime_type=part.inline_data.mime_type or "image/png",
                    )
                if part.text:
                    text_parts.append(part.text)

        return StagingResult(
            success=False,
            error="\n".join(text_parts) or "No staged image was generated.",
        )

    async def check_health(self) -> ProviderHealth:
        # no dedicated health endpoint, a configured key is treated as available
        if not self.api_key:
            return ProviderHealth(
                provider=self.provider_id,
                available=False,
                error_message="GOOGLE_GEMINI_API_KEY not configured",
            )
        return ProviderHealth(provider=self.provider_id, available=True)

    def estimated_processing_time(self) -> int:
        return 10
