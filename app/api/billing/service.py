from typing import Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.constants import FREE_PLAN_SLUG, PLAN_CATALOG, get_topup_package
from app.config import Settings
from app.context import AppContext
from app.logger.logger import logger
from app.models import Plan, User


async def seed_plans(session: AsyncSession, settings: Settings) -> None:
    """Insert or refresh the plan catalogue with the configured price ids"""
    price_ids = settings.plan_price_ids
    for info in PLAN_CATALOG.values():
        result = await session.execute(select(Plan).where(Plan.slug == info.slug))
        plan = result.scalars().first()
        if plan is None:
            plan = Plan(slug=info.slug, name=info.name, credits_per_month=info.credits)
        plan.name = info.name
        plan.credits_per_month = info.credits
        plan.max_team_members = info.max_team_members
        plan.sort_order = info.sort_order
        plan.stripe_price_id = price_ids.get(info.slug) or plan.stripe_price_id
        session.add(plan)
    await session.commit()


class BillingCheckoutService:
    def __init__(self, session: AsyncSession, context: AppContext) -> None:
        self.session = session
        self.settings = context.settings
        self.stripe_service = context.stripe_service

    async def list_plans(self) -> List[Dict]:
        result = await self.session.execute(
            select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.sort_order)
        )
        return [
            {
                "id": str(plan.id),
                "slug": plan.slug,
                "name": plan.name,
                "credits_per_month": plan.credits_per_month,
                "max_team_members": plan.max_team_members,
                "purchasable": bool(plan.stripe_price_id),
            }
            for plan in result.scalars().all()
        ]

    async def _ensure_customer(self, user: User) -> str:
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer = self.stripe_service.create_customer(email=user.email, name=user.name)
        user.stripe_customer_id = customer["id"]
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        logger.info(f"Created Stripe customer {customer['id']} for user {user.id}")
        return user.stripe_customer_id

    def _urls(self, success_url: Optional[str], cancel_url: Optional[str]):
        return (
            success_url or f"{self.settings.APP_URL}/billing/success",
            cancel_url or f"{self.settings.APP_URL}/billing/cancel",
        )

    async def create_subscription_checkout(
        self,
        user: User,
        plan_slug: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Dict:
        result = await self.session.execute(select(Plan).where(Plan.slug == plan_slug))
        plan = result.scalars().first()
        if not plan or plan.slug == FREE_PLAN_SLUG:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Plan {plan_slug} cannot be purchased",
            )
        if not plan.stripe_price_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Plan {plan_slug} has no configured price",
            )

        customer_id = await self._ensure_customer(user)
        success, cancel = self._urls(success_url, cancel_url)
        checkout = self.stripe_service.create_checkout_session(
            mode="subscription",
            customer=customer_id,
            price_id=plan.stripe_price_id,
            success_url=success,
            cancel_url=cancel,
            metadata={
                "user_id": str(user.id),
                "plan_slug": plan.slug,
                "credits": str(plan.credits_per_month),
            },
        )
        return {"session_id": checkout["id"], "url": checkout["url"]}

    async def create_topup_checkout(
        self,
        user: User,
        package_id: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Dict:
        package = get_topup_package(package_id)
        price_id = self.settings.topup_price_ids.get(package_id)
        if not package or not price_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Top-up package {package_id} is not available",
            )

        customer_id = await self._ensure_customer(user)
        success, cancel = self._urls(success_url, cancel_url)
        checkout = self.stripe_service.create_checkout_session(
            mode="payment",
            customer=customer_id,
            price_id=price_id,
            success_url=success,
            cancel_url=cancel,
            metadata={
                "user_id": str(user.id),
                "package_id": package.id,
                "credits": str(package.credits),
            },
        )
        return {"session_id": checkout["id"], "url": checkout["url"]}
