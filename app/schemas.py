import base64
import binascii
import uuid as uuid_pkg
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from app.common.constants import (
    ACCEPTED_IMAGE_TYPES,
    MAX_BATCH_SIZE,
    MAX_IMAGE_SIZE,
    FurnitureStyle,
    RoomType,
)


def decode_image_payload(image: str) -> bytes:
    """Decode a raw or data-URL base64 payload"""
    if image.startswith("data:") and "," in image:
        image = image.split(",", 1)[1]
    try:
        return base64.b64decode(image, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Image must be valid base64 data")


class StagingImageInput(BaseModel):
    image: str
    mime_type: str
    room_type: RoomType
    style: FurnitureStyle
    # white marks the floor area to furnish, black is left untouched
    mask: Optional[str] = None

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, value: str) -> str:
        value = value.lower()
        if value not in ACCEPTED_IMAGE_TYPES:
            raise ValueError(
                f"Unsupported image type {value}. Accepted: {', '.join(ACCEPTED_IMAGE_TYPES)}"
            )
        return value

    @field_validator("image", "mask")
    @classmethod
    def validate_image(cls, value: Optional[str], info: ValidationInfo) -> Optional[str]:
        if value is None:
            return value
        label = info.field_name.capitalize()
        data = decode_image_payload(value)
        if not data:
            raise ValueError(f"{label} must not be empty")
        if len(data) > MAX_IMAGE_SIZE:
            raise ValueError(f"{label} exceeds the 10MB size limit")
        return value

    @property
    def image_bytes(self) -> bytes:
        return decode_image_payload(self.image)

    @property
    def mask_bytes(self) -> Optional[bytes]:
        return decode_image_payload(self.mask) if self.mask else None


class CreateStagingRequest(StagingImageInput):
    property_id: Optional[uuid_pkg.UUID] = None
    preferred_provider: Optional[str] = None


class BatchStagingRequest(BaseModel):
    images: List[StagingImageInput] = Field(min_length=1)
    property_id: Optional[uuid_pkg.UUID] = None
    preferred_provider: Optional[str] = None

    @model_validator(mode="after")
    def validate_batch_size(self):
        if len(self.images) > MAX_BATCH_SIZE:
            raise ValueError(f"A batch may contain at most {MAX_BATCH_SIZE} images")
        return self


class RemixRequest(BaseModel):
    room_type: RoomType
    style: FurnitureStyle
    property_id: Optional[uuid_pkg.UUID] = None


class MemberCreditsRequest(BaseModel):
    credits: int = Field(ge=0)


class SubscriptionCheckoutRequest(BaseModel):
    plan_slug: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class TopupCheckoutRequest(BaseModel):
    package_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class StagingProgress(BaseModel):
    step: str
    step_number: int
    total_steps: int
    message: str


class StagingJobStatusResponse(BaseModel):
    job_id: uuid_pkg.UUID
    status: str
    progress: StagingProgress
    estimated_time_remaining: Optional[int] = None
    staged_image_url: Optional[str] = None
    original_image_url: Optional[str] = None
    mask_image_url: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None
    room_type: Optional[str] = None
    style: Optional[str] = None
    version_group_id: Optional[uuid_pkg.UUID] = None
    is_primary_version: bool = False
    parent_job_id: Optional[uuid_pkg.UUID] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    # an image URL holds inline data or a provider link instead of a stored object
    storage_degraded: bool = False


class CreditAvailabilityResponse(BaseModel):
    available: int
    allocated: int
    used: int
    is_team_member: bool
    low_credits: bool = False
