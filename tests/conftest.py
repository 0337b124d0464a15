import base64
import uuid
from typing import List, Optional
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from app.auth.auth_handler import create_access_token
from app.common.s3_file_upload import S3FileClient
from app.config import load_settings
from app.context import build_context
from app.database import init_db
from app.models import CreditTransaction, StagingJob, User
from app.providers.base import (
    AsyncCapable,
    PredictionState,
    PredictionStatus,
    ProviderHealth,
    StagingInput,
    StagingResult,
    SyncCapable,
)
from app.providers.router import ProviderRouter
from app.schemas import CreateStagingRequest

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PNG_BASE64 = base64.b64encode(PNG_BYTES).decode("ascii")
STAGED_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x01" * 64
MASK_BYTES = b"\x89PNG\r\n\x1a\n" + b"\xff" * 32
MASK_BASE64 = base64.b64encode(MASK_BYTES).decode("ascii")
WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret"


class FakeSyncProvider(SyncCapable):
    provider_id = "fake-sync"
    display_name = "Fake synchronous provider"

    def __init__(self):
        self.available = True
        self.result = StagingResult(
            success=True, image_data=STAGED_BYTES, mime_type="image/png"
        )
        self.error: Optional[Exception] = None
        self.calls: List[StagingInput] = []
        # awaited between generation and the result being returned
        self.on_generate = None

    async def stage_image_sync(self, staging_input: StagingInput) -> StagingResult:
        self.calls.append(staging_input)
        if self.on_generate:
            await self.on_generate(staging_input)
        if self.error:
            raise self.error
        return self.result

    async def check_health(self) -> ProviderHealth:
        return ProviderHealth(provider=self.provider_id, available=self.available)

    def estimated_processing_time(self) -> int:
        return 10


class FakeAsyncProvider(AsyncCapable):
    provider_id = "fake-async"
    display_name = "Fake asynchronous provider"

    def __init__(self):
        self.available = True
        self.submitted: List[StagingInput] = []
        self.prediction = PredictionStatus(status=PredictionState.PROCESSING)
        self.status_calls = 0

    async def stage_image_async(self, staging_input: StagingInput) -> str:
        self.submitted.append(staging_input)
        return f"pred-{len(self.submitted)}"

    async def get_prediction_status(self, prediction_id: str) -> PredictionStatus:
        self.status_calls += 1
        return self.prediction

    async def check_health(self) -> ProviderHealth:
        return ProviderHealth(provider=self.provider_id, available=self.available)

    def estimated_processing_time(self) -> int:
        return 30


def image_download_handler(request: httpx.Request) -> httpx.Response:
    if "missing" in request.url.path:
        return httpx.Response(404)
    return httpx.Response(
        200, content=STAGED_BYTES, headers={"content-type": "image/png"}
    )


@pytest.fixture
def sync_provider():
    return FakeSyncProvider()


@pytest.fixture
def async_provider():
    return FakeAsyncProvider()


@pytest.fixture
def s3_instance():
    return MagicMock()


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'staging.db'}",
        JWT_SECRET_KEY=JWT_SECRET,
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_PRICE_STANDARD="price_standard",
        STRIPE_PRICE_PROFESSIONAL="price_professional",
        STRIPE_PRICE_ENTERPRISE="price_enterprise",
        STRIPE_TOPUP_10="price_topup_10",
        AWS_S3_BUCKET_NAME="staging-test",
    )


@pytest_asyncio.fixture
async def context(settings, sync_provider, async_provider, s3_instance):
    provider_router = ProviderRouter(
        providers={
            sync_provider.provider_id: sync_provider,
            async_provider.provider_id: async_provider,
        },
        default_provider=sync_provider.provider_id,
        fallback_provider=async_provider.provider_id,
        health_ttl_seconds=0,
    )
    ctx = build_context(
        settings,
        storage=S3FileClient(settings, s3_instance=s3_instance),
        provider_router=provider_router,
    )
    ctx.http_transport = httpx.MockTransport(image_download_handler)
    await init_db(ctx.engine)
    yield ctx
    await ctx.engine.dispose()


@pytest_asyncio.fixture
async def session(context):
    async with context.session_factory() as session:
        yield session


@pytest.fixture
def make_user(session):
    async def _make_user(credits: int = 10, plan_slug: str = "free", **kwargs) -> User:
        user = User(
            email=kwargs.pop("email", f"{uuid.uuid4().hex[:10]}@example.com"),
            name=kwargs.pop("name", "Test User"),
            credits_remaining=credits,
            plan_slug=plan_slug,
            **kwargs,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

    return _make_user


def staging_request(**overrides) -> CreateStagingRequest:
    values = {
        "image": PNG_BASE64,
        "mime_type": "image/png",
        "room_type": "living-room",
        "style": "modern",
    }
    values.update(overrides)
    return CreateStagingRequest(**values)


def auth_headers(user: User) -> dict:
    token = create_access_token(user.email, JWT_SECRET)
    return {"Authorization": f"Bearer {token}"}


async def balance_of(session, user: User) -> int:
    await session.refresh(user)
    return user.credits_remaining


async def transactions_for(session, user_id, transaction_type=None) -> List[CreditTransaction]:
    query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
    if transaction_type:
        query = query.where(CreditTransaction.transaction_type == transaction_type)
    result = await session.execute(query.order_by(CreditTransaction.created_at))
    return list(result.scalars().all())


async def job_count(session, user_id) -> int:
    result = await session.execute(select(StagingJob.id).where(StagingJob.user_id == user_id))
    return len(result.all())
