from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.credit_management.service import CreditLedgerService
from app.api.credit_management.stripe.route import router as cm_stripe_router
from app.api.deps import get_current_user
from app.common.constants import LOW_CREDITS_THRESHOLD
from app.common.http_response_model import CommonResponse
from app.database import db_session
from app.models import TransactionType, User
from app.schemas import CreditAvailabilityResponse

router = APIRouter()


@router.get("/balance", name="Get user credit balance")
async def get_user_balance(
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> CommonResponse:
    try:
        service = CreditLedgerService(session)
        availability = await service.check_available(user.id)
        result = CreditAvailabilityResponse(
            available=availability.available,
            allocated=availability.allocated,
            used=availability.used,
            is_team_member=availability.is_team_member,
            low_credits=availability.available <= LOW_CREDITS_THRESHOLD,
        )

        payload = CommonResponse(
            message="User credit balance fetched successfully",
            success=True,
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


@router.get("/transactions", name="Get transaction history")
async def get_transaction_history(
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    transaction_type: Optional[TransactionType] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
) -> CommonResponse:
    try:
        service = CreditLedgerService(session)
        transactions, pagination = await service.get_transaction_history(
            user_id=user.id,
            page=page,
            page_size=page_size,
            tx_type=transaction_type,
        )

        payload = CommonResponse(
            message="Transaction history fetched successfully",
            success=True,
            payload=transactions,
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


router.include_router(cm_stripe_router, prefix="/stripe", tags=["credit-management"])
