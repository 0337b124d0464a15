from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.billing.service import BillingCheckoutService
from app.api.deps import get_app_context, get_current_user
from app.common.http_response_model import CommonResponse
from app.context import AppContext
from app.database import db_session
from app.logger.logger import logger
from app.models import User
from app.schemas import SubscriptionCheckoutRequest, TopupCheckoutRequest

router = APIRouter()


@router.get("/plans", name="List subscription plans")
async def list_plans(
    response: Response,
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = BillingCheckoutService(session, context)
        result = await service.list_plans()
        payload = CommonResponse(
            success=True, message="Plans fetched successfully", payload=result
        )
        response.status_code = status.HTTP_200_OK
        return payload

    except Exception as e:
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.post("/checkout/subscription", name="Create subscription checkout session")
async def create_subscription_checkout(
    request: SubscriptionCheckoutRequest,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = BillingCheckoutService(session, context)
        result = await service.create_subscription_checkout(
            user,
            plan_slug=request.plan_slug,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
        payload = CommonResponse(
            success=True, message="Checkout session created", payload=result
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
        logger.error(f"Error creating subscription checkout: {e}")
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload


@router.post("/checkout/topup", name="Create credit top-up checkout session")
async def create_topup_checkout(
    request: TopupCheckoutRequest,
    response: Response,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        service = BillingCheckoutService(session, context)
        result = await service.create_topup_checkout(
            user,
            package_id=request.package_id,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
        payload = CommonResponse(
            success=True, message="Checkout session created", payload=result
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
        logger.error(f"Error creating top-up checkout: {e}")
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload
