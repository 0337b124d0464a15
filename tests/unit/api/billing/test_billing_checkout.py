from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from fastapi import HTTPException

from app.api.billing.service import BillingCheckoutService, seed_plans
from app.app import get_app
from conftest import auth_headers


@pytest_asyncio.fixture
async def plans(session, settings):
    await seed_plans(session, settings)


@pytest.fixture
def stripe_service(context):
    service = MagicMock()
    service.create_customer.return_value = {"id": "cus_new"}
    service.create_checkout_session.return_value = {
        "id": "cs_new",
        "url": "https://checkout.stripe.com/c/pay/cs_new",
    }
    context.stripe_service = service
    return service


@pytest.mark.asyncio
async def test_plans_are_listed_in_order(context, session, plans):
    listed = await BillingCheckoutService(session, context).list_plans()

    assert [p["slug"] for p in listed] == ["free", "standard", "professional", "enterprise"]
    assert listed[0]["purchasable"] is False
    assert listed[1]["credits_per_month"] == 60


@pytest.mark.asyncio
async def test_subscription_checkout_carries_plan_metadata(
    context, session, plans, make_user, stripe_service
):
    user = await make_user()

    result = await BillingCheckoutService(session, context).create_subscription_checkout(
        user, "professional"
    )

    assert result == {"session_id": "cs_new", "url": "https://checkout.stripe.com/c/pay/cs_new"}
    kwargs = stripe_service.create_checkout_session.call_args.kwargs
    assert kwargs["mode"] == "subscription"
    assert kwargs["customer"] == "cus_new"
    assert kwargs["price_id"] == "price_professional"
    assert kwargs["metadata"] == {
        "user_id": str(user.id),
        "plan_slug": "professional",
        "credits": "150",
    }
    await session.refresh(user)
    assert user.stripe_customer_id == "cus_new"


@pytest.mark.asyncio
async def test_existing_customer_is_reused(context, session, plans, make_user, stripe_service):
    user = await make_user(stripe_customer_id="cus_existing")

    await BillingCheckoutService(session, context).create_topup_checkout(user, "topup_10")

    stripe_service.create_customer.assert_not_called()
    kwargs = stripe_service.create_checkout_session.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["customer"] == "cus_existing"
    assert kwargs["metadata"]["package_id"] == "topup_10"
    assert kwargs["metadata"]["credits"] == "10"


@pytest.mark.asyncio
async def test_free_plan_cannot_be_bought(context, session, plans, make_user, stripe_service):
    user = await make_user()

    with pytest.raises(HTTPException) as exc_info:
        await BillingCheckoutService(session, context).create_subscription_checkout(user, "free")

    assert exc_info.value.status_code == 400
    stripe_service.create_checkout_session.assert_not_called()


@pytest.mark.asyncio
async def test_unpriced_topup_is_rejected(context, session, plans, make_user, stripe_service):
    user = await make_user()

    with pytest.raises(HTTPException) as exc_info:
        await BillingCheckoutService(session, context).create_topup_checkout(user, "topup_25")

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_checkout_route_requires_auth_and_returns_envelope(
    context, session, plans, make_user, stripe_service
):
    user = await make_user()
    app = get_app(context)

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        anonymous = await client.post(
            "/api/v1/billing/checkout/topup", json={"package_id": "topup_10"}
        )
        response = await client.post(
            "/api/v1/billing/checkout/topup",
            json={"package_id": "topup_10"},
            headers=auth_headers(user),
        )

    assert anonymous.status_code in (401, 403)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["payload"]["session_id"] == "cs_new"
