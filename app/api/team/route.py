from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.deps import get_current_user
from app.api.team.service import TeamCreditService
from app.common.http_response_model import CommonResponse
from app.database import db_session
from app.models import User
from app.schemas import MemberCreditsRequest

router = APIRouter()


@router.get("/pool", name="Get team credit pool")
async def get_team_pool(
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> CommonResponse:
    try:
        service = TeamCreditService(session)
        result = await service.get_pool(user)
        payload = CommonResponse(
            success=True,
            message="Team credit pool fetched successfully",
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


@router.patch("/members/{member_id}/credits", name="Allocate credits to a team member")
async def allocate_member_credits(
    member_id: UUID,
    request: MemberCreditsRequest,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> CommonResponse:
    try:
        service = TeamCreditService(session)
        result = await service.allocate_member_credits(user, member_id, request.credits)
        payload = CommonResponse(
            success=True,
            message="Member credits updated successfully",
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
