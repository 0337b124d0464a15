from typing import Tuple
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.staging.service import (
    GENERIC_FAILURE_MESSAGE,
    StagingJobService,
    image_extension,
)
from app.context import AppContext
from app.logger.logger import logger
from app.models import StagingJob, StagingJobStatus, User
from app.providers.base import PredictionState
from app.schemas import StagingJobStatusResponse

POLLABLE_STATUSES = (StagingJobStatus.QUEUED, StagingJobStatus.PROCESSING)


class StagingPollService:
    """Advances async-provider jobs when their status is read"""

    def __init__(self, session: AsyncSession, context: AppContext) -> None:
        self.session = session
        self.context = context
        self.jobs = StagingJobService(session, context)

    async def refresh_job_status(
        self, user: User, job_id: UUID
    ) -> StagingJobStatusResponse:
        job = await self.jobs.get_owned_job(user.id, job_id)

        if job.status not in POLLABLE_STATUSES or not job.prediction_id:
            return self.jobs.build_status_snapshot(job)

        try:
            await self._advance(job)
        except Exception as e:
            logger.exception(f"Error polling job {job.id}: {e}")
            await self.session.rollback()
            await self.jobs.mark_failed(job.id, GENERIC_FAILURE_MESSAGE)

        job = await self.jobs.reload_job(job.id)
        return self.jobs.build_status_snapshot(job)

    async def _advance(self, job: StagingJob) -> None:
        provider = self.context.provider_router.get_async_provider(job.provider)
        if provider is None:
            await self.jobs.mark_failed(
                job.id, f"Provider {job.provider} does not support status polling"
            )
            return

        prediction = await provider.get_prediction_status(job.prediction_id)

        if prediction.status == PredictionState.PROCESSING:
            return

        if prediction.status == PredictionState.FAILED:
            await self.jobs.mark_failed(job.id, prediction.error or "Staging failed")
            return

        output_url = prediction.output_url
        if not output_url:
            await self.jobs.mark_failed(job.id, "No output image was generated")
            return

        if not await self.jobs.claim_for_upload(job.id):
            logger.info(f"Job {job.id} is already being finalized by another poll")
            return

        staged_url, degraded = await self._persist_output(job, output_url)
        await self.jobs.finalize_success(job.id, staged_url, storage_degraded=degraded)

    async def _persist_output(self, job: StagingJob, output_url: str) -> Tuple[str, bool]:
        """Copy the provider's output into storage, keeping the provider URL on failure"""
        try:
            data, mime_type = await self.jobs.download_image(output_url)
        except httpx.HTTPError as e:
            logger.error(f"Could not download output of job {job.id}: {e}")
            return output_url, True

        url = await self.context.storage.try_upload(
            f"{job.user_id}/{job.id}-staged.{image_extension(mime_type)}",
            data,
            mime_type,
        )
        if url is None:
            logger.warning(f"Keeping provider URL for job {job.id}, storage upload failed")
            return output_url, True
        return url, False
