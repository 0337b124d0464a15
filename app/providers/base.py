from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, List, Optional, Union

from app.common.constants import room_label, style_info


class ProviderMode(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


class PredictionState(str, Enum):
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StagingInput:
    image_bytes: bytes
    mime_type: str
    room_type: str
    style: str
    job_id: str
    image_url: Optional[str] = None
    mask_bytes: Optional[bytes] = None


@dataclass
class StagingResult:
    success: bool
    image_data: Optional[bytes] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PredictionStatus:
    status: PredictionState
    output: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def output_url(self) -> Optional[str]:
        return self.output[0] if self.output else None


@dataclass
class ProviderHealth:
    provider: str
    available: bool
    rate_limited: bool = False
    error_message: Optional[str] = None


class ProviderError(Exception):
    """Raised when a provider call fails outside of an explicit failure response"""


class StagingProvider(ABC):
    provider_id: ClassVar[str]
    display_name: ClassVar[str]
    mode: ClassVar[ProviderMode]

    @abstractmethod
    async def check_health(self) -> ProviderHealth:
        ...

    @abstractmethod
    def estimated_processing_time(self) -> int:
        """Typical end-to-end generation time in seconds"""

    def build_prompt(self, room_type: str, style: str) -> str:
        style_details = style_info(style)
        return f"{style_details.label} {room_label(room_type)}"

    def build_negative_prompt(self) -> Optional[str]:
        return None


class SyncCapable(StagingProvider):
    mode = ProviderMode.SYNC

    @abstractmethod
    async def stage_image_sync(self, staging_input: StagingInput) -> StagingResult:
        ...


class AsyncCapable(StagingProvider):
    mode = ProviderMode.ASYNC

    @abstractmethod
    async def stage_image_async(self, staging_input: StagingInput) -> str:
        """Submit the generation and return the external prediction id"""

    @abstractmethod
    async def get_prediction_status(self, prediction_id: str) -> PredictionStatus:
        ...


ProviderHandle = Union[SyncCapable, AsyncCapable]
