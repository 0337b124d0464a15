import base64
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import httpx
from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.credit_management.service import CreditLedgerService
from app.common.api_usage import APIEndpointKey
from app.common.constants import (
    FREE_REMIXES_PER_IMAGE,
    VERSION_WARNING_THRESHOLD,
    room_label,
    style_info,
)
from app.common.http_response_model import PageMeta
from app.context import AppContext
from app.logger.logger import logger
from app.models import (
    TERMINAL_JOB_STATUSES,
    StagingJob,
    StagingJobStatus,
    User,
    VersionGroup,
    utc_now,
)
from app.providers.base import (
    AsyncCapable,
    ProviderHandle,
    StagingInput,
    SyncCapable,
)
from app.providers.router import NoProviderAvailable, ProviderSelection
from app.schemas import (
    BatchStagingRequest,
    CreateStagingRequest,
    RemixRequest,
    StagingJobStatusResponse,
    StagingProgress,
    decode_image_payload,
)

INSUFFICIENT_CREDITS_MESSAGE = "Insufficient credits. Please upgrade your plan."
CREDITS_CHANGED_MESSAGE = (
    "Credits changed during processing and no longer cover this staging. "
    "No credits were charged, please check your balance and try again."
)
GENERIC_FAILURE_MESSAGE = "An unexpected error occurred while staging the image."
DEFAULT_ESTIMATE_SECONDS = 10

PROGRESS_STEPS: Dict[StagingJobStatus, StagingProgress] = {
    StagingJobStatus.PENDING: StagingProgress(
        step="queued", step_number=1, total_steps=4,
        message="Job queued, waiting to start...",
    ),
    StagingJobStatus.QUEUED: StagingProgress(
        step="queued", step_number=1, total_steps=4,
        message="Job queued, waiting to start...",
    ),
    StagingJobStatus.PREPROCESSING: StagingProgress(
        step="preprocessing", step_number=2, total_steps=4,
        message="Analyzing room and preparing inputs...",
    ),
    StagingJobStatus.PROCESSING: StagingProgress(
        step="generating", step_number=3, total_steps=4,
        message="Generating staged image with AI...",
    ),
    StagingJobStatus.UPLOADING: StagingProgress(
        step="uploading", step_number=4, total_steps=4,
        message="Uploading final image...",
    ),
    StagingJobStatus.COMPLETED: StagingProgress(
        step="completed", step_number=4, total_steps=4,
        message="Staging complete!",
    ),
    StagingJobStatus.FAILED: StagingProgress(
        step="failed", step_number=0, total_steps=4,
        message="Staging failed",
    ),
}

# fraction of the provider estimate already spent when a job enters a status
STEP_PROGRESS: Dict[StagingJobStatus, float] = {
    StagingJobStatus.PENDING: 0.0,
    StagingJobStatus.QUEUED: 0.0,
    StagingJobStatus.PREPROCESSING: 0.2,
    StagingJobStatus.PROCESSING: 0.5,
    StagingJobStatus.UPLOADING: 0.9,
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def image_extension(mime_type: Optional[str]) -> str:
    if not mime_type or "/" not in mime_type:
        return "png"
    return mime_type.split("/")[1]


def compute_image_hash(image_url: str) -> str:
    return hashlib.md5(image_url.encode("utf-8")).hexdigest()


def progress_for_status(job_status: StagingJobStatus) -> StagingProgress:
    return PROGRESS_STEPS[StagingJobStatus(job_status)]


class StagingJobService:
    def __init__(self, session: AsyncSession, context: AppContext) -> None:
        self.session = session
        self.context = context
        self.ledger = CreditLedgerService(session)
        self.storage = context.storage
        self.provider_router = context.provider_router
        self.cost_manager = context.cost_manager

    # ------------------------------------------------------------------ reads

    async def reload_job(self, job_id: UUID) -> Optional[StagingJob]:
        query = (
            select(StagingJob)
            .where(StagingJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_owned_job(self, user_id: UUID, job_id: UUID) -> StagingJob:
        query = (
            select(StagingJob)
            .where(StagingJob.id == job_id, StagingJob.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        job = result.scalars().first()
        if not job:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Job not found"
            )
        return job

    def estimated_processing_time(self, provider_id: str) -> int:
        provider = self.provider_router.get_provider(provider_id)
        if provider is None:
            return DEFAULT_ESTIMATE_SECONDS
        return provider.estimated_processing_time()

    def estimate_time_remaining(
        self, job: StagingJob, now: Optional[datetime] = None
    ) -> Optional[int]:
        if job.status in TERMINAL_JOB_STATUSES:
            return None

        total_estimate = self.estimated_processing_time(job.provider)
        progress = STEP_PROGRESS.get(job.status, 0.0)
        now = now or utc_now()
        elapsed = max(0.0, (now - as_utc(job.created_at)).total_seconds())
        remaining = max(0.0, total_estimate * (1 - progress) - elapsed * progress)
        return round(remaining)

    def build_status_snapshot(
        self, job: StagingJob, now: Optional[datetime] = None
    ) -> StagingJobStatusResponse:
        return StagingJobStatusResponse(
            job_id=job.id,
            status=StagingJobStatus(job.status).value,
            progress=progress_for_status(job.status),
            estimated_time_remaining=self.estimate_time_remaining(job, now),
            staged_image_url=job.staged_image_url,
            original_image_url=job.original_image_url,
            mask_image_url=job.mask_image_url,
            error=job.error_message,
            provider=job.provider,
            room_type=job.room_type,
            style=job.style,
            version_group_id=job.version_group_id,
            is_primary_version=job.is_primary_version,
            parent_job_id=job.parent_job_id,
            created_at=job.created_at,
            completed_at=job.completed_at,
            processing_time_ms=job.processing_time_ms,
            storage_degraded=job.storage_degraded,
        )

    async def get_job(self, user: User, job_id: UUID) -> StagingJobStatusResponse:
        job = await self.get_owned_job(user.id, job_id)
        return self.build_status_snapshot(job)

    async def list_jobs(
        self,
        user: User,
        page: int = 1,
        page_size: int = 20,
        job_status: Optional[StagingJobStatus] = None,
        property_id: Optional[UUID] = None,
    ) -> Tuple[List[StagingJobStatusResponse], PageMeta]:
        query = select(StagingJob).where(StagingJob.user_id == user.id)
        if job_status:
            query = query.where(StagingJob.status == job_status)
        if property_id:
            query = query.where(StagingJob.property_id == property_id)
        query = query.order_by(StagingJob.created_at.desc())

        total_count = await self.session.scalar(
            select(func.count()).select_from(query.subquery())
        )
        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.session.execute(query)
        jobs = [self.build_status_snapshot(job) for job in result.scalars().all()]

        pagination = PageMeta(
            page=page,
            page_size=page_size,
            total_pages=(total_count + page_size - 1) // page_size,
            total_items=total_count,
        )
        return jobs, pagination

    async def get_versions(
        self,
        user: User,
        group_id: Optional[UUID] = None,
        job_id: Optional[UUID] = None,
    ) -> Dict:
        if not group_id and not job_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Either group_id or job_id is required",
            )

        if job_id and not group_id:
            job = await self.get_owned_job(user.id, job_id)
            if not job.version_group_id:
                return {
                    "versions": [self.build_status_snapshot(job)],
                    "version_group": None,
                    "free_remixes_remaining": FREE_REMIXES_PER_IMAGE,
                    "total_versions": 1,
                    "show_version_warning": False,
                }
            group_id = job.version_group_id

        group = await self._get_owned_group(user.id, group_id)
        result = await self.session.execute(
            select(StagingJob)
            .where(
                StagingJob.version_group_id == group.id,
                StagingJob.user_id == user.id,
            )
            .order_by(StagingJob.created_at.asc())
            .execution_options(populate_existing=True)
        )
        versions = [self.build_status_snapshot(job) for job in result.scalars().all()]

        return {
            "versions": versions,
            "version_group": {
                "id": str(group.id),
                "original_image_url": group.original_image_url,
                "free_remixes_used": group.free_remixes_used,
                "created_at": group.created_at,
            },
            "free_remixes_remaining": max(
                0, FREE_REMIXES_PER_IMAGE - group.free_remixes_used
            ),
            "total_versions": len(versions),
            "show_version_warning": len(versions) >= VERSION_WARNING_THRESHOLD,
        }

    async def _get_owned_group(self, user_id: UUID, group_id: UUID) -> VersionGroup:
        result = await self.session.execute(
            select(VersionGroup)
            .where(VersionGroup.id == group_id, VersionGroup.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        group = result.scalars().first()
        if not group:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Version group not found",
            )
        return group

    # ------------------------------------------------------------ transitions

    async def _transition(
        self,
        job_id: UUID,
        from_statuses: Iterable[StagingJobStatus],
        to_status: StagingJobStatus,
        **values,
    ) -> bool:
        """Conditional status flip, True only for the caller that won it"""
        stmt = (
            update(StagingJob)
            .where(StagingJob.id == job_id, StagingJob.status.in_(list(from_statuses)))
            .values(status=to_status, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def claim_for_upload(self, job_id: UUID) -> bool:
        claimed = await self._transition(
            job_id, (StagingJobStatus.PROCESSING,), StagingJobStatus.UPLOADING
        )
        await self.session.commit()
        return claimed

    def _elapsed_ms(self, job: StagingJob, now: datetime) -> int:
        return int((now - as_utc(job.created_at)).total_seconds() * 1000)

    async def finalize_success(
        self, job_id: UUID, staged_image_url: str, storage_degraded: bool = False
    ) -> bool:
        """Flip uploading to completed and debit the job's cost in one transaction.

        When the debit is refused the same transaction fails the job instead.
        """
        job = await self.reload_job(job_id)
        if job is None:
            return False

        now = utc_now()
        values = {
            "staged_image_url": staged_image_url,
            "completed_at": now,
            "processing_time_ms": self._elapsed_ms(job, now),
            "error_message": None,
        }
        if storage_degraded:
            values["storage_degraded"] = True

        completed = await self._transition(
            job_id, (StagingJobStatus.UPLOADING,), StagingJobStatus.COMPLETED, **values
        )
        if not completed:
            await self.session.rollback()
            logger.info(f"Job {job_id} was already finalized by another request")
            return False

        if job.credits_cost > 0:
            debited = await self.ledger.reserve_and_debit(
                job.user_id,
                job.credits_cost,
                reference_id=str(job_id),
                description=(
                    f"Virtual staging - {room_label(job.room_type)} "
                    f"({style_info(job.style).label})"
                ),
            )
            if not debited:
                await self.session.execute(
                    update(StagingJob)
                    .where(StagingJob.id == job_id)
                    .values(
                        status=StagingJobStatus.FAILED,
                        staged_image_url=None,
                        completed_at=None,
                        error_message=CREDITS_CHANGED_MESSAGE,
                    )
                    .execution_options(synchronize_session=False)
                )
                await self.session.commit()
                logger.warning(
                    f"Job {job_id} failed at finalize, credits changed since the pre-check"
                )
                return False

        await self.session.commit()
        logger.info(f"Job {job_id} completed, {job.credits_cost} credits charged")
        return True

    async def mark_failed(self, job_id: UUID, message: str) -> bool:
        job = await self.reload_job(job_id)
        if job is None:
            return False

        non_terminal = [
            s for s in StagingJobStatus if s not in TERMINAL_JOB_STATUSES
        ]
        failed = await self._transition(
            job_id,
            non_terminal,
            StagingJobStatus.FAILED,
            error_message=message or "Staging failed",
            staged_image_url=None,
            processing_time_ms=self._elapsed_ms(job, utc_now()),
        )
        await self.session.commit()
        if failed:
            logger.warning(f"Job {job_id} failed: {message}")
        return failed

    # --------------------------------------------------------------- dispatch

    async def _select_provider(self, preferred: Optional[str] = None) -> ProviderSelection:
        try:
            return await self.provider_router.select_provider(preferred)
        except NoProviderAvailable as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
            )

    async def _ensure_credits(self, user_id: UUID, required: int) -> None:
        if required <= 0:
            return
        availability = await self.ledger.check_available(user_id)
        if availability.available < required:
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail=INSUFFICIENT_CREDITS_MESSAGE,
            )

    async def _store_image(
        self, path: str, data: bytes, mime_type: str
    ) -> Tuple[str, bool]:
        """Upload to storage, falling back to a full inline data URL"""
        url = await self.storage.try_upload(path, data, mime_type)
        if url:
            return url, False
        logger.warning(f"Storage upload failed for {path}, keeping inline image data")
        return to_data_url(data, mime_type), True

    async def download_image(self, url: str) -> Tuple[bytes, str]:
        if url.startswith("data:"):
            header = url.split(",", 1)[0]
            mime_type = header[len("data:"):].split(";")[0] or "image/png"
            return decode_image_payload(url), mime_type

        async with httpx.AsyncClient(
            transport=self.context.http_transport,
            timeout=self.context.settings.PROVIDER_TIMEOUT_SECONDS,
            follow_redirects=True,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()

        mime_type = response.headers.get("content-type", "").split(";")[0]
        if not mime_type.startswith("image/"):
            mime_type = "image/jpeg" if url.lower().endswith((".jpg", ".jpeg")) else "image/png"
        return response.content, mime_type

    async def _start_job(
        self,
        user: User,
        image_bytes: bytes,
        mime_type: str,
        room_type: str,
        style: str,
        selection: ProviderSelection,
        credits_cost: int,
        property_id: Optional[UUID] = None,
        original_image_url: Optional[str] = None,
        parent_job_id: Optional[UUID] = None,
        version_group_id: Optional[UUID] = None,
        is_primary_version: bool = True,
        mask_bytes: Optional[bytes] = None,
    ) -> StagingJob:
        job_id = uuid.uuid4()
        provider = selection.provider
        storage_degraded = False
        mask_image_url = None

        if original_image_url is None:
            original_image_url, storage_degraded = await self._store_image(
                f"{user.id}/{job_id}-original.{image_extension(mime_type)}",
                image_bytes,
                mime_type,
            )

        if mask_bytes:
            mask_image_url, mask_degraded = await self._store_image(
                f"{user.id}/{job_id}-mask.png", mask_bytes, "image/png"
            )
            storage_degraded = storage_degraded or mask_degraded

        job = StagingJob(
            id=job_id,
            user_id=user.id,
            property_id=property_id,
            parent_job_id=parent_job_id,
            version_group_id=version_group_id,
            is_primary_version=is_primary_version,
            room_type=room_type,
            style=style,
            original_image_url=original_image_url,
            mask_image_url=mask_image_url,
            status=(
                StagingJobStatus.PROCESSING
                if selection.supports_sync
                else StagingJobStatus.QUEUED
            ),
            provider=provider.provider_id,
            credits_cost=credits_cost,
            storage_degraded=storage_degraded,
        )
        self.session.add(job)
        await self.session.commit()

        if selection.fallback_used:
            logger.info(f"Job {job_id} using fallback provider {provider.provider_id}")

        staging_input = StagingInput(
            image_bytes=image_bytes,
            mime_type=mime_type,
            room_type=room_type,
            style=style,
            job_id=str(job_id),
            image_url=None if original_image_url.startswith("data:") else original_image_url,
            mask_bytes=mask_bytes,
        )
        await self.dispatch(job, staging_input, provider)
        return await self.reload_job(job_id)

    async def dispatch(
        self, job: StagingJob, staging_input: StagingInput, provider: ProviderHandle
    ) -> None:
        try:
            if isinstance(provider, SyncCapable):
                await self._dispatch_sync(job, staging_input, provider)
            elif isinstance(provider, AsyncCapable):
                await self._dispatch_async(job, staging_input, provider)
            else:
                raise TypeError(f"Unsupported provider type {type(provider).__name__}")
        except Exception as e:
            logger.exception(f"Unexpected error dispatching job {job.id}: {e}")
            await self.session.rollback()
            await self.mark_failed(job.id, GENERIC_FAILURE_MESSAGE)

    async def _dispatch_sync(
        self, job: StagingJob, staging_input: StagingInput, provider: SyncCapable
    ) -> None:
        result = await provider.stage_image_sync(staging_input)
        if not result.success or not result.image_data:
            await self.mark_failed(job.id, result.error or "Staging failed")
            return

        if not await self.claim_for_upload(job.id):
            logger.warning(f"Job {job.id} left processing before its result was stored")
            return

        mime_type = result.mime_type or "image/png"
        staged_url, degraded = await self._store_image(
            f"{job.user_id}/{job.id}-staged.{image_extension(mime_type)}",
            result.image_data,
            mime_type,
        )
        await self.finalize_success(job.id, staged_url, storage_degraded=degraded)

    async def _dispatch_async(
        self, job: StagingJob, staging_input: StagingInput, provider: AsyncCapable
    ) -> None:
        prediction_id = await provider.stage_image_async(staging_input)
        generation_params = {
            "prompt": provider.build_prompt(job.room_type, job.style),
            "negative_prompt": provider.build_negative_prompt(),
        }
        await self._transition(
            job.id,
            (StagingJobStatus.PENDING, StagingJobStatus.QUEUED),
            StagingJobStatus.PROCESSING,
            prediction_id=prediction_id,
            generation_params=generation_params,
        )
        await self.session.commit()

    # ---------------------------------------------------------------- create

    def _creation_payload(self, job: StagingJob) -> Dict:
        snapshot = self.build_status_snapshot(job)
        is_async = isinstance(
            self.provider_router.get_provider(job.provider), AsyncCapable
        )
        payload = snapshot.model_dump()
        payload.update(
            {
                "async": is_async,
                "estimated_time_seconds": self.estimated_processing_time(job.provider),
                "poll_url": (
                    f"{self.context.settings.API_PREFIX}/staging/{job.id}/status"
                    if is_async
                    else None
                ),
            }
        )
        return payload

    async def create_job(self, user: User, request: CreateStagingRequest) -> Dict:
        cost = self.cost_manager.get_cost(APIEndpointKey.STAGING)
        await self._ensure_credits(user.id, cost)
        selection = await self._select_provider(request.preferred_provider)

        job = await self._start_job(
            user,
            image_bytes=request.image_bytes,
            mime_type=request.mime_type,
            room_type=request.room_type.value,
            style=request.style.value,
            selection=selection,
            credits_cost=cost,
            property_id=request.property_id,
            mask_bytes=request.mask_bytes,
        )
        return self._creation_payload(job)

    async def create_batch(self, user: User, request: BatchStagingRequest) -> Dict:
        cost = self.cost_manager.get_cost(APIEndpointKey.STAGING)
        await self._ensure_credits(user.id, cost * len(request.images))
        selection = await self._select_provider(request.preferred_provider)

        jobs = []
        for image in request.images:
            job = await self._start_job(
                user,
                image_bytes=image.image_bytes,
                mime_type=image.mime_type,
                room_type=image.room_type.value,
                style=image.style.value,
                selection=selection,
                credits_cost=cost,
                property_id=request.property_id,
                mask_bytes=image.mask_bytes,
            )
            jobs.append(self._creation_payload(job))

        completed = sum(1 for j in jobs if j["status"] == StagingJobStatus.COMPLETED.value)
        failed = sum(1 for j in jobs if j["status"] == StagingJobStatus.FAILED.value)
        return {
            "jobs": jobs,
            "total": len(jobs),
            "completed": completed,
            "failed": failed,
            "in_progress": len(jobs) - completed - failed,
        }

    # ----------------------------------------------------------------- remix

    async def _get_or_create_group(self, user: User, parent: StagingJob) -> VersionGroup:
        image_hash = compute_image_hash(parent.original_image_url)
        query = (
            select(VersionGroup)
            .where(
                VersionGroup.user_id == user.id,
                VersionGroup.original_image_hash == image_hash,
            )
            .execution_options(populate_existing=True)
        )
        group = (await self.session.execute(query)).scalars().first()
        if group:
            return group

        group = VersionGroup(
            user_id=user.id,
            original_image_hash=image_hash,
            original_image_url=parent.original_image_url,
        )
        self.session.add(group)
        try:
            await self.session.commit()
        except IntegrityError:
            # created concurrently for the same image
            await self.session.rollback()
            group = (await self.session.execute(query)).scalars().one()
        return group

    async def _join_group(self, user: User, job_id: UUID, group_id: UUID) -> None:
        """Move an ungrouped job into a group, as primary only if the group has none.

        Another job from the same photo may already lead the group, for example
        two uploads that both fell back to the same inline image.
        """
        async with self.context.version_group_locks.lock(group_id):
            await self.session.execute(
                select(VersionGroup.id).where(VersionGroup.id == group_id).with_for_update()
            )
            has_primary = await self.session.scalar(
                select(func.count())
                .select_from(StagingJob)
                .where(
                    StagingJob.version_group_id == group_id,
                    StagingJob.user_id == user.id,
                    StagingJob.is_primary_version.is_(True),
                )
            )
            await self.session.execute(
                update(StagingJob)
                .where(StagingJob.id == job_id, StagingJob.version_group_id.is_(None))
                .values(version_group_id=group_id, is_primary_version=not has_primary)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

    async def _claim_free_remix(self, group_id: UUID) -> bool:
        result = await self.session.execute(
            update(VersionGroup)
            .where(
                VersionGroup.id == group_id,
                VersionGroup.free_remixes_used < FREE_REMIXES_PER_IMAGE,
            )
            .values(free_remixes_used=VersionGroup.free_remixes_used + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def remix_job(self, user: User, job_id: UUID, request: RemixRequest) -> Dict:
        parent = await self.get_owned_job(user.id, job_id)
        if parent.status != StagingJobStatus.COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Can only remix completed staging jobs",
            )

        group = await self._get_or_create_group(user, parent)
        remix_cost = self.cost_manager.get_cost(APIEndpointKey.STAGING_REMIX)
        free_candidate = group.free_remixes_used < FREE_REMIXES_PER_IMAGE
        if not free_candidate:
            await self._ensure_credits(user.id, remix_cost)

        selection = await self._select_provider()

        try:
            image_bytes, mime_type = await self.download_image(parent.original_image_url)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Could not read original image of job {parent.id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="The original image for this job is no longer available",
            )

        is_free = free_candidate and await self._claim_free_remix(group.id)
        if not is_free and free_candidate:
            # the last free remix went to a concurrent request
            await self._ensure_credits(user.id, remix_cost)

        if not parent.version_group_id:
            await self._join_group(user, parent.id, group.id)

        job = await self._start_job(
            user,
            image_bytes=image_bytes,
            mime_type=mime_type,
            room_type=request.room_type.value,
            style=request.style.value,
            selection=selection,
            credits_cost=0 if is_free else remix_cost,
            property_id=request.property_id or parent.property_id,
            original_image_url=parent.original_image_url,
            parent_job_id=parent.id,
            version_group_id=group.id,
            is_primary_version=False,
        )

        group = await self._get_owned_group(user.id, group.id)
        payload = self._creation_payload(job)
        payload.update(
            {
                "is_free_remix": is_free,
                "free_remixes_remaining": max(
                    0, FREE_REMIXES_PER_IMAGE - group.free_remixes_used
                ),
            }
        )
        return payload

    # --------------------------------------------------------------- primary

    async def set_primary_version(
        self, user: User, job_id: UUID
    ) -> StagingJobStatusResponse:
        job = await self.get_owned_job(user.id, job_id)

        if not job.version_group_id:
            await self.session.execute(
                update(StagingJob)
                .where(StagingJob.id == job.id)
                .values(is_primary_version=True)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            return self.build_status_snapshot(await self.reload_job(job.id))

        group_id = job.version_group_id
        async with self.context.version_group_locks.lock(group_id):
            # row lock keeps other processes out of the same group
            await self.session.execute(
                select(VersionGroup.id).where(VersionGroup.id == group_id).with_for_update()
            )
            await self.session.execute(
                update(StagingJob)
                .where(
                    StagingJob.version_group_id == group_id,
                    StagingJob.user_id == user.id,
                )
                .values(is_primary_version=False)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(StagingJob)
                .where(StagingJob.id == job.id)
                .values(is_primary_version=True)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        logger.info(f"Job {job.id} is now the primary version of group {group_id}")
        return self.build_status_snapshot(await self.reload_job(job.id))
