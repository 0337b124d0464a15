import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.requests import Request
from fastapi.responses import Response
from sqlmodel.ext.asyncio.session import AsyncSession

from app.api.credit_management.stripe.service import StripeBillingReconciler
from app.api.deps import get_app_context
from app.common.http_response_model import CommonResponse
from app.context import AppContext
from app.database import db_session
from app.logger.logger import logger

router = APIRouter()


@router.post("/webhook", name="Handle Stripe webhook events")
async def handle_stripe_webhook(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(db_session),
    context: AppContext = Depends(get_app_context),
) -> CommonResponse:
    try:
        signature = request.headers.get("stripe-signature")
        if not signature:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing Stripe signature",
            )

        payload = await request.body()

        try:
            event = context.stripe_service.construct_event(
                payload.decode("utf-8"), signature
            )
        except (stripe.SignatureVerificationError, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid Stripe signature",
            )

        reconciler = StripeBillingReconciler(session, context)
        message = await reconciler.process_event(event)

        payload = CommonResponse(success=True, message=message, payload=None)
        response.status_code = status.HTTP_200_OK
        return payload

    except HTTPException as http_err:
        payload = CommonResponse(
            success=False, message=str(http_err.detail), payload=None
        )
        response.status_code = http_err.status_code
        return payload

    except Exception as e:
        # a non-2xx answer makes Stripe redeliver the event
        await session.rollback()
        logger.error(f"Error processing Stripe webhook: {e}")
        payload = CommonResponse(success=False, message=str(e), payload=None)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return payload
