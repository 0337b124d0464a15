import base64
from typing import Optional

import httpx

from app.common.constants import FurnitureStyle, RoomType, room_label, style_info
from app.logger.logger import logger
from app.providers.base import (
    ProviderHealth,
    StagingInput,
    StagingResult,
    SyncCapable,
)

DECOR8_ROOM_TYPES = {
    RoomType.LIVING_ROOM.value: "livingroom",
    RoomType.BEDROOM_MASTER.value: "bedroom",
    RoomType.BEDROOM_GUEST.value: "bedroom",
    RoomType.BEDROOM_KIDS.value: "kidsroom",
    RoomType.DINING_ROOM.value: "diningroom",
    RoomType.KITCHEN.value: "kitchen",
    RoomType.HOME_OFFICE.value: "homeoffice",
    RoomType.BATHROOM.value: "bathroom",
    RoomType.OUTDOOR_PATIO.value: "patio",
}

DECOR8_DESIGN_STYLES = {
    FurnitureStyle.MODERN.value: "modern",
    FurnitureStyle.TRADITIONAL.value: "traditional",
    FurnitureStyle.MINIMALIST.value: "minimalist",
    FurnitureStyle.MID_CENTURY.value: "midcenturymodern",
    FurnitureStyle.SCANDINAVIAN.value: "scandinavian",
    FurnitureStyle.INDUSTRIAL.value: "industrial",
    FurnitureStyle.COASTAL.value: "coastal",
    FurnitureStyle.FARMHOUSE.value: "farmhouse",
    FurnitureStyle.LUXURY.value: "luxemodern",
}

DECOR8_NEGATIVE_PROMPT = (
    "changing walls, changing floor, changing ceiling, changing windows, changing doors, "
    "removing windows, removing doors, altering room structure, construction, renovation, "
    "different wall color, different flooring"
)


def map_room_type(room_type: str) -> str:
    return DECOR8_ROOM_TYPES.get(room_type, "livingroom")


def map_design_style(style: str) -> str:
    return DECOR8_DESIGN_STYLES.get(style, "modern")


class Decor8Provider(SyncCapable):
    provider_id = "decor8"
    display_name = "Decor8 AI"
    base_url = "https://api.decor8.ai"

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    def build_prompt(self, room_type: str, style: str) -> str:
        return (
            f"Add {style_info(style).label} style furniture to this empty {room_label(room_type)}. "
            "Professional real estate virtual staging. Only add furniture and decor, "
            "preserve all existing room features."
        )

    def build_negative_prompt(self) -> str:
        return DECOR8_NEGATIVE_PROMPT

    async def stage_image_sync(self, staging_input: StagingInput) -> StagingResult:
        if staging_input.image_url and staging_input.image_url.startswith("http"):
            image_url = staging_input.image_url
        else:
            encoded = base64.b64encode(staging_input.image_bytes).decode("ascii")
            image_url = f"data:{staging_input.mime_type};base64,{encoded}"

        payload = {
            "input_image_url": image_url,
            "room_type": map_room_type(staging_input.room_type),
            "design_style": map_design_style(staging_input.style),
            "num_images": 1,
            "keep_original_dimensions": True,
            "prompt": self.build_prompt(staging_input.room_type, staging_input.style),
            "negative_prompt": self.build_negative_prompt(),
            "guidance_scale": 7.5,
            "num_inference_steps": 50,
        }

        try:
            async with self._client() as client:
                response = await client.post("/generate_designs_for_room", json=payload)
                logger.debug(f"Decor8 response status: {response.status_code}")

                if response.status_code != 200:
                    return StagingResult(
                        success=False,
                        error=f"Decor8 API error: {response.status_code} - {response.text}",
                    )

                data = response.json()
                images = (data.get("info") or {}).get("images") or []
                if data.get("error") or not images:
                    return StagingResult(
                        success=False, error=data.get("error") or "No images generated"
                    )

                generated_url = images[0]["url"]
                image_response = await client.get(generated_url)
                image_response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Decor8 request failed for job {staging_input.job_id}: {e}")
            return StagingResult(success=False, error=str(e))

        mime_type = (
            "image/jpeg"
            if ".jpg" in generated_url or ".jpeg" in generated_url
            else "image/png"
        )
        return StagingResult(
            success=True, image_data=image_response.content, mime_type=mime_type
        )

    async def check_health(self) -> ProviderHealth:
        if not self.api_key:
            return ProviderHealth(
                provider=self.provider_id,
                available=False,
                error_message="DECOR8_API_KEY not configured",
            )

        try:
            async with self._client() as client:
                response = await client.get("/speak_friend_and_enter")
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
        return 15
