import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from app.config import Settings
from app.logger.logger import logger
from app.providers.base import (
    AsyncCapable,
    ProviderHandle,
    ProviderHealth,
    SyncCapable,
)
from app.providers.decor8 import Decor8Provider
from app.providers.gemini import GeminiProvider
from app.providers.replicate import ReplicateProvider


class NoProviderAvailable(Exception):
    """No configured provider reported itself healthy"""


@dataclass
class ProviderSelection:
    provider: ProviderHandle
    fallback_used: bool = False

    @property
    def supports_sync(self) -> bool:
        return isinstance(self.provider, SyncCapable)


class ProviderRouter:
    def __init__(
        self,
        providers: Dict[str, ProviderHandle],
        default_provider: str,
        fallback_provider: Optional[str] = None,
        enable_fallback: bool = True,
        health_ttl_seconds: float = 60,
    ):
        self.providers = providers
        self.default_provider = default_provider
        self.fallback_provider = fallback_provider
        self.enable_fallback = enable_fallback
        self.health_ttl_seconds = health_ttl_seconds
        self._health_cache: Dict[str, Tuple[ProviderHealth, float]] = {}

    def get_provider(self, provider_id: str) -> Optional[ProviderHandle]:
        return self.providers.get(provider_id)

    def get_async_provider(self, provider_id: str) -> Optional[AsyncCapable]:
        provider = self.providers.get(provider_id)
        if isinstance(provider, AsyncCapable):
            return provider
        return None

    def clear_health_cache(self) -> None:
        self._health_cache.clear()

    async def check_health(self, provider_id: str) -> ProviderHealth:
        provider = self.providers.get(provider_id)
        if provider is None:
            return ProviderHealth(
                provider=provider_id,
                available=False,
                error_message=f"Unknown provider: {provider_id}",
            )

        cached = self._health_cache.get(provider_id)
        now = time.monotonic()
        if cached and now - cached[1] < self.health_ttl_seconds:
            return cached[0]

        try:
            health = await provider.check_health()
        except Exception as e:
            logger.error(f"Health check for {provider_id} raised: {e}")
            health = ProviderHealth(
                provider=provider_id, available=False, error_message=str(e)
            )

        self._health_cache[provider_id] = (health, now)
        return health

    async def select_provider(self, preferred: Optional[str] = None) -> ProviderSelection:
        """Pick the first healthy provider out of preferred, default and fallback.

        Raises NoProviderAvailable before the caller creates any job or
        touches credits.
        """
        candidates = []
        if preferred:
            candidates.append(preferred)
        if self.default_provider not in candidates:
            candidates.append(self.default_provider)

        for provider_id in candidates:
            health = await self.check_health(provider_id)
            if health.available:
                return ProviderSelection(provider=self.providers[provider_id])
            logger.warning(
                f"Provider {provider_id} unavailable: {health.error_message}"
            )

        if (
            self.enable_fallback
            and self.fallback_provider
            and self.fallback_provider not in candidates
        ):
            health = await self.check_health(self.fallback_provider)
            if health.available:
                logger.info(f"Falling back to provider {self.fallback_provider}")
                return ProviderSelection(
                    provider=self.providers[self.fallback_provider],
                    fallback_used=True,
                )

        raise NoProviderAvailable(
            "No image generation provider is currently available. Please try again later."
        )


def build_provider_router(settings: Settings) -> ProviderRouter:
    providers: Dict[str, ProviderHandle] = {
        GeminiProvider.provider_id: GeminiProvider(
            api_key=settings.GOOGLE_GEMINI_API_KEY,
            model_id=settings.GEMINI_IMAGE_MODEL,
        ),
        Decor8Provider.provider_id: Decor8Provider(
            api_key=settings.DECOR8_API_KEY,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        ),
        ReplicateProvider.provider_id: ReplicateProvider(
            api_token=settings.REPLICATE_API_TOKEN,
            model_version=settings.REPLICATE_MODEL_VERSION,
        ),
    }
    return ProviderRouter(
        providers=providers,
        default_provider=settings.AI_DEFAULT_PROVIDER,
        fallback_provider=settings.AI_FALLBACK_PROVIDER,
        enable_fallback=settings.AI_ENABLE_FALLBACK,
        health_ttl_seconds=settings.PROVIDER_HEALTH_TTL_SECONDS,
    )
