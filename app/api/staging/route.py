from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.deps import get_app_context, get_current_user
from app.api.staging.poll_service import StagingPollService
from app.api.staging.service import StagingJobService
from app.common.http_response_model import CommonResponse
from app.context import AppContext
from app.database import db_session
from app.logger.logger import logger
from app.models import StagingJobStatus, User
from app.schemas import BatchStagingRequest, CreateStagingRequest, RemixRequest

router = APIRouter()


@router.post("", name="Stage a room image")
async def create_staging_job(
    request: CreateStagingRequest,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingJobService(session, context)
        result = await service.create_job(user, request)

        success = result["status"] != StagingJobStatus.FAILED.value
        payload = CommonResponse(
            success=success,
            message=(
                "Staging job created successfully"
                if success
                else result["error"] or "Failed to stage image"
            ),
            payload=result,
        )
        response.status_code = (
            status.HTTP_200_OK if success else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        logger.error(f"Error creating staging job: {e}")
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.post("/batch", name="Stage a batch of room images")
async def create_staging_batch(
    request: BatchStagingRequest,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingJobService(session, context)
        result = await service.create_batch(user, request)

        payload = CommonResponse(
            success=True,
            message=f"{result['total']} staging jobs created",
            payload=result,
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        logger.error(f"Error creating staging batch: {e}")
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.get("", name="List staging jobs")
async def list_staging_jobs(
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    job_status: Optional[StagingJobStatus] = Query(None, alias="status"),
    property_id: Optional[UUID] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingJobService(session, context)
        jobs, pagination = await service.list_jobs(
            user,
            page=page,
            page_size=page_size,
            job_status=job_status,
            property_id=property_id,
        )
        payload = CommonResponse(
            success=True,
            message="Staging jobs fetched successfully",
            payload=jobs,
            meta=pagination,
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.get("/versions", name="Get versions of a staged image")
async def get_staging_versions(
    response: Response,
    group_id: Optional[UUID] = None,
    job_id: Optional[UUID] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingJobService(session, context)
        result = await service.get_versions(user, group_id=group_id, job_id=job_id)
        payload = CommonResponse(
            success=True,
            message="Versions fetched successfully",
            payload=result,
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.get("/{job_id}", name="Get staging job")
async def get_staging_job(
    job_id: UUID,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingJobService(session, context)
        result = await service.get_job(user, job_id)
        payload = CommonResponse(
            success=True,
            message="Staging job fetched successfully",
            payload=result,
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.get("/{job_id}/status", name="Poll staging job status")
async def get_staging_job_status(
    job_id: UUID,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingPollService(session, context)
        result = await service.refresh_job_status(user, job_id)
        payload = CommonResponse(
            success=True,
            message="Staging job status fetched successfully",
            payload=result,
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        logger.error(f"Error polling staging job {job_id}: {e}")
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.post("/{job_id}/remix", name="Remix a completed staging job")
async def remix_staging_job(
    job_id: UUID,
    request: RemixRequest,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingJobService(session, context)
        result = await service.remix_job(user, job_id, request)
        payload = CommonResponse(
            success=True,
            message="Remix job created successfully",
            payload=result,
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        logger.error(f"Error remixing staging job {job_id}: {e}")
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.put("/{job_id}/primary", name="Set primary version")
async def set_primary_version(
    job_id: UUID,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = StagingJobService(session, context)
        result = await service.set_primary_version(user, job_id)
        payload = CommonResponse(
            success=True,
            message="Set as primary version",
            payload=result,
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload
