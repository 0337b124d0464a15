import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from app.common.api_usage import APICostManager
from app.common.s3_file_upload import S3FileClient
from app.config import Settings, load_settings
from app.database import create_engine_and_sessionmaker
from app.providers.router import ProviderRouter, build_provider_router
from app.stripe.stripe_service import StripeService


class KeyedLocks:
    """Registry of asyncio locks, one per key.

    A key's lock lives only while some task holds or waits for it, so the
    registry stays as small as the number of keys currently in use.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def lock(self, key) -> AsyncIterator[None]:
        key = str(key)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: sessionmaker
    storage: S3FileClient
    provider_router: ProviderRouter
    stripe_service: StripeService
    cost_manager: APICostManager
    version_group_locks: KeyedLocks = field(default_factory=KeyedLocks)
    # outbound image downloads, replaced by a mock transport in tests
    http_transport: Optional[httpx.AsyncBaseTransport] = None


def build_context(
    settings: Optional[Settings] = None,
    storage: Optional[S3FileClient] = None,
    provider_router: Optional[ProviderRouter] = None,
    stripe_service: Optional[StripeService] = None,
) -> AppContext:
    """Build everything the services share, once per process"""
    settings = settings or load_settings()
    engine, session_factory = create_engine_and_sessionmaker(settings)

    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        storage=storage or S3FileClient(settings),
        provider_router=provider_router or build_provider_router(settings),
        stripe_service=stripe_service or StripeService(settings),
        cost_manager=APICostManager(settings),
    )
