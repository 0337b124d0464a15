from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from app.config import Settings


class APIEndpointKey(str, Enum):
    STAGING = "staging"
    STAGING_REMIX = "staging_remix"


@dataclass
class EndpointInfo:
    endpoint: str
    cost: int


class APICostManager:
    """Credit cost per billable endpoint, seeded from settings"""

    def __init__(self, settings: Settings) -> None:
        self._endpoints: Dict[APIEndpointKey, EndpointInfo] = {
            APIEndpointKey.STAGING: EndpointInfo(
                endpoint="/api/v1/staging", cost=settings.CREDITS_PER_STAGING
            ),
            APIEndpointKey.STAGING_REMIX: EndpointInfo(
                endpoint="/api/v1/staging/{job_id}/remix",
                cost=settings.CREDITS_PER_REMIX,
            ),
        }
        for key, info in self._endpoints.items():
            if info.cost < 0:
                raise ValueError(f"Credit cost for {key.value} must not be negative")

    def get_endpoint_info(self, key: APIEndpointKey) -> EndpointInfo:
        """Get endpoint information by key"""
        if key not in self._endpoints:
            raise ValueError(f"Invalid endpoint key: {key}")
        return self._endpoints[key]

    def get_endpoint(self, key: APIEndpointKey) -> str:
        return self.get_endpoint_info(key).endpoint

    def get_cost(self, key: APIEndpointKey, quantity: Optional[int] = 1) -> int:
        """Get the credit cost for `quantity` billable units of an endpoint"""
        return self.get_endpoint_info(key).cost * (quantity or 1)
