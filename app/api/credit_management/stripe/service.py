from datetime import datetime, timezone
from typing import Any, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.credit_management.service import CreditLedgerService
from app.common.constants import ENTERPRISE_PLAN_SLUG, FREE_PLAN_SLUG, PLAN_CATALOG
from app.context import AppContext
from app.logger.logger import logger
from app.models import (
    CreditTopup,
    MemberRole,
    Organization,
    OrganizationMember,
    Plan,
    ProcessedWebhookEvent,
    Subscription,
    SubscriptionStatus,
    TransactionType,
    User,
    utc_now,
)


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def object_id(value: Any) -> Optional[str]:
    """Stripe fields may hold an id or the expanded object"""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def first_item(obj: Any, key: str) -> Optional[Any]:
    container = obj.get(key) or {}
    data = container.get("data") or []
    return data[0] if data else None


class StripeBillingReconciler:
    """Applies signed Stripe events to subscriptions, pools and balances.

    Handlers never commit. `process_event` commits once per event together
    with the processed-event marker so a failed event is retried whole.
    """

    def __init__(self, session: AsyncSession, context: AppContext) -> None:
        self.session = session
        self.context = context
        self.stripe_service = context.stripe_service
        self.ledger = CreditLedgerService(session)

    async def process_event(self, event) -> str:
        event_id = event.get("id")
        event_type = event["type"]
        event_data = event["data"]["object"]

        if event_id and await self._is_processed(event_id):
            logger.info(f"Stripe event {event_id} already processed, skipping")
            return f"Event {event_id} already processed"

        logger.info(f"Processing Stripe webhook event: {event_type}")

        if event_type == "checkout.session.completed":
            await self.handle_checkout_completed(event_data)
            message = "Checkout session completed event processed"
        elif event_type == "invoice.paid":
            await self.handle_invoice_paid(event_data)
            message = "Invoice paid event processed"
        elif event_type == "invoice.payment_failed":
            await self.handle_invoice_payment_failed(event_data)
            message = "Invoice payment failed event processed"
        elif event_type == "customer.subscription.updated":
            await self.handle_subscription_updated(event_data)
            message = "Subscription updated event processed"
        elif event_type == "customer.subscription.deleted":
            await self.handle_subscription_deleted(event_data)
            message = "Subscription deleted event processed"
        elif event_type == "payment_intent.succeeded":
            await self.handle_payment_intent_succeeded(event_data)
            message = "Payment intent succeeded event processed"
        else:
            message = f"Unhandled event type: {event_type}"
            logger.info(message)

        if event_id:
            self.session.add(
                ProcessedWebhookEvent(stripe_event_id=event_id, event_type=event_type)
            )
        await self.session.commit()
        return message

    async def _is_processed(self, event_id: str) -> bool:
        result = await self.session.execute(
            select(ProcessedWebhookEvent.id).where(
                ProcessedWebhookEvent.stripe_event_id == event_id
            )
        )
        return result.first() is not None

    # ---------------------------------------------------------------- lookups

    async def _get_user_by_id(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        try:
            user_uuid = UUID(str(user_id))
        except ValueError:
            logger.error(f"Invalid user_id in Stripe metadata: {user_id}")
            return None
        return await self.session.get(User, user_uuid)

    async def _get_user_by_customer(self, customer_id: Optional[str]) -> Optional[User]:
        if not customer_id:
            return None
        result = await self.session.execute(
            select(User).where(User.stripe_customer_id == customer_id)
        )
        return result.scalars().first()

    async def _resolve_user(
        self, metadata: Optional[dict], customer_id: Optional[str]
    ) -> Optional[User]:
        user = await self._get_user_by_id((metadata or {}).get("user_id"))
        if user is None:
            user = await self._get_user_by_customer(customer_id)
        return user

    async def _get_plan_by_slug(self, slug: Optional[str]) -> Optional[Plan]:
        if not slug:
            return None
        result = await self.session.execute(select(Plan).where(Plan.slug == slug))
        return result.scalars().first()

    async def _get_plan_by_price(self, price_id: Optional[str]) -> Optional[Plan]:
        if not price_id:
            return None
        result = await self.session.execute(
            select(Plan).where(Plan.stripe_price_id == price_id)
        )
        return result.scalars().first()

    async def _get_subscription(self, stripe_subscription_id: str) -> Optional[Subscription]:
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == stripe_subscription_id
            )
        )
        return result.scalars().first()

    async def _get_owned_organization(self, user_id: UUID) -> Optional[Organization]:
        result = await self.session.execute(
            select(Organization).where(Organization.owner_id == user_id)
        )
        return result.scalars().first()

    def _subscription_period(self, stripe_subscription) -> Tuple[Optional[datetime], Optional[datetime]]:
        item = first_item(stripe_subscription, "items") or {}
        start = item.get("current_period_start") or stripe_subscription.get(
            "current_period_start"
        )
        end = item.get("current_period_end") or stripe_subscription.get(
            "current_period_end"
        )
        return from_timestamp(start), from_timestamp(end)

    def _subscription_price_id(self, stripe_subscription) -> Optional[str]:
        item = first_item(stripe_subscription, "items") or {}
        return object_id(item.get("price"))

    def _invoice_subscription_id(self, invoice) -> Optional[str]:
        subscription_id = object_id(invoice.get("subscription"))
        if subscription_id:
            return subscription_id
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        return object_id(details.get("subscription"))

    def _invoice_metadata(self, invoice) -> dict:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        return details.get("metadata") or invoice.get("subscription_details", {}).get(
            "metadata"
        ) or {}

    def _invoice_price_id(self, invoice) -> Optional[str]:
        line = first_item(invoice, "lines") or {}
        price_id = object_id(line.get("price"))
        if price_id:
            return price_id
        price_details = (line.get("pricing") or {}).get("price_details") or {}
        return object_id(price_details.get("price"))

    def _invoice_period(self, invoice) -> Tuple[Optional[datetime], Optional[datetime]]:
        line = first_item(invoice, "lines") or {}
        period = line.get("period") or {}
        return from_timestamp(period.get("start")), from_timestamp(period.get("end"))

    # --------------------------------------------------------------- checkout

    async def handle_checkout_completed(self, checkout_session) -> None:
        metadata = checkout_session.get("metadata") or {}
        customer_id = object_id(checkout_session.get("customer"))
        user = await self._resolve_user(metadata, customer_id)
        if user is None:
            logger.error(
                f"No user found for checkout session {checkout_session.get('id')}"
            )
            return

        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
            self.session.add(user)

        mode = checkout_session.get("mode")
        if mode == "subscription" and checkout_session.get("subscription"):
            await self._activate_subscription(user, checkout_session, customer_id)
        elif mode == "payment":
            await self._apply_topup(user, checkout_session)
        else:
            logger.info(f"Ignoring checkout session in mode {mode}")

    async def _activate_subscription(
        self, user: User, checkout_session, customer_id: Optional[str]
    ) -> None:
        metadata = checkout_session.get("metadata") or {}
        plan = await self._get_plan_by_slug(metadata.get("plan_slug"))
        if plan is None:
            logger.error(f"Plan not found for checkout session {checkout_session['id']}")
            return

        stripe_subscription_id = object_id(checkout_session["subscription"])
        period_start, period_end = utc_now(), None
        if self.stripe_service.api_key:
            stripe_subscription = self.stripe_service.subscription_details_by_id(
                stripe_subscription_id
            )
            start, end = self._subscription_period(stripe_subscription)
            period_start, period_end = start or period_start, end

        result = await self.session.execute(
            select(Subscription).where(Subscription.user_id == user.id)
        )
        subscription = result.scalars().first()
        if subscription is None:
            subscription = Subscription(
                user_id=user.id, stripe_subscription_id=stripe_subscription_id
            )
        subscription.plan_id = plan.id
        subscription.stripe_subscription_id = stripe_subscription_id
        subscription.stripe_customer_id = customer_id
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.current_period_start = period_start
        subscription.current_period_end = period_end
        subscription.cancel_at_period_end = False
        subscription.canceled_at = None
        self.session.add(subscription)

        user.plan_slug = plan.slug
        self.session.add(user)
        await self.session.flush()

        session_id = checkout_session["id"]
        if await self.ledger.has_transaction(
            session_id, TransactionType.SUBSCRIPTION_RENEWAL
        ):
            logger.info(f"Credits for checkout {session_id} already allocated")
        else:
            await self.ledger.reset(
                user.id,
                plan.credits_per_month,
                reference_id=session_id,
                description=f"{plan.name} plan subscription started",
            )

        if plan.slug == ENTERPRISE_PLAN_SLUG:
            await self._provision_organization(user, plan)

        logger.info(f"Subscription activated for user {user.id}, plan {plan.slug}")

    async def _provision_organization(self, user: User, plan: Plan) -> Organization:
        organization = await self._get_owned_organization(user.id)
        if organization:
            return organization

        organization = Organization(
            name=f"{user.name or 'User'}'s Team",
            owner_id=user.id,
            total_credits=plan.credits_per_month,
            unallocated_credits=0,
        )
        self.session.add(organization)
        await self.session.flush()

        result = await self.session.execute(
            select(OrganizationMember).where(OrganizationMember.user_id == user.id)
        )
        membership = result.scalars().first()
        if membership:
            logger.warning(
                f"User {user.id} already belongs to organization "
                f"{membership.organization_id}, not adding owner membership"
            )
            organization.unallocated_credits = plan.credits_per_month
        else:
            self.session.add(
                OrganizationMember(
                    organization_id=organization.id,
                    user_id=user.id,
                    role=MemberRole.OWNER,
                    allocated_credits=plan.credits_per_month,
                    joined_at=utc_now(),
                )
            )

        user.organization_id = organization.id
        self.session.add(user)
        self.session.add(organization)
        await self.session.flush()
        logger.info(f"Organization {organization.id} provisioned for user {user.id}")
        return organization

    async def _apply_topup(self, user: User, checkout_session) -> None:
        metadata = checkout_session.get("metadata") or {}
        package_id = metadata.get("package_id")
        credits = int(metadata.get("credits") or 0)
        if not package_id or credits <= 0:
            logger.error(f"Missing top-up metadata on session {checkout_session['id']}")
            return

        session_id = checkout_session["id"]
        result = await self.session.execute(
            select(CreditTopup.id).where(
                CreditTopup.stripe_checkout_session_id == session_id
            )
        )
        if result.first() is not None:
            logger.info(f"Top-up for checkout {session_id} already applied")
            return

        # unique session key makes a concurrent re-delivery fail here
        self.session.add(
            CreditTopup(
                user_id=user.id,
                stripe_checkout_session_id=session_id,
                credits_purchased=credits,
                amount_cents=checkout_session.get("amount_total") or 0,
                status="completed",
                completed_at=utc_now(),
            )
        )
        await self.session.flush()

        await self.ledger.add(
            user.id,
            credits,
            transaction_type=TransactionType.TOPUP_PURCHASE,
            reference_id=session_id,
            description=f"Purchased {credits} credits",
            metadata={"package_id": package_id},
        )
        logger.info(f"Top-up completed for user {user.id}, {credits} credits")

    # ---------------------------------------------------------------- invoices

    async def handle_invoice_paid(self, invoice) -> None:
        # the first invoice is covered by checkout.session.completed
        if invoice.get("billing_reason") == "subscription_create":
            return

        stripe_subscription_id = self._invoice_subscription_id(invoice)
        if not stripe_subscription_id:
            return

        subscription = await self._get_subscription(stripe_subscription_id)
        if subscription:
            user = await self.session.get(User, subscription.user_id)
        else:
            user = await self._resolve_user(
                self._invoice_metadata(invoice), object_id(invoice.get("customer"))
            )
        if user is None:
            logger.warning(
                f"No user found for renewal of subscription {stripe_subscription_id}"
            )
            return

        invoice_id = invoice["id"]
        if await self.ledger.has_transaction(
            invoice_id, TransactionType.SUBSCRIPTION_RENEWAL
        ):
            logger.info(f"Renewal for invoice {invoice_id} already applied")
            return

        plan = await self._get_plan_by_price(self._invoice_price_id(invoice))
        if plan is None and subscription and subscription.plan_id:
            plan = await self.session.get(Plan, subscription.plan_id)
        if plan is None:
            logger.error(f"Could not determine plan for invoice {invoice_id}")
            return

        period_start, period_end = self._invoice_period(invoice)
        if subscription:
            subscription.plan_id = plan.id
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.current_period_start = period_start or utc_now()
            subscription.current_period_end = period_end
            self.session.add(subscription)

        user.plan_slug = plan.slug
        self.session.add(user)
        await self.session.flush()

        organization = await self._get_owned_organization(user.id)
        description = f"Monthly credit reset - {plan.slug} plan"
        if organization:
            await self.ledger.reset_pool(
                organization,
                plan.credits_per_month,
                reference_id=invoice_id,
                description=description,
            )
        else:
            await self.ledger.reset(
                user.id,
                plan.credits_per_month,
                reference_id=invoice_id,
                description=description,
            )
        logger.info(
            f"Credits reset for user {user.id}, {plan.credits_per_month} credits"
        )

    async def handle_invoice_payment_failed(self, invoice) -> None:
        stripe_subscription_id = self._invoice_subscription_id(invoice)
        if not stripe_subscription_id:
            return

        subscription = await self._get_subscription(stripe_subscription_id)
        if subscription is None:
            logger.warning(f"Payment failed for unknown subscription {stripe_subscription_id}")
            return

        subscription.status = SubscriptionStatus.PAST_DUE
        self.session.add(subscription)
        logger.info(f"Subscription {stripe_subscription_id} marked as past_due")

    # ----------------------------------------------------------- subscriptions

    async def handle_subscription_updated(self, stripe_subscription) -> None:
        subscription = await self._get_subscription(stripe_subscription["id"])
        if subscription is None:
            logger.warning(
                f"Update for unknown subscription {stripe_subscription['id']}, ignoring"
            )
            return

        plan = await self._get_plan_by_price(self._subscription_price_id(stripe_subscription))
        cancel_at_period_end = bool(stripe_subscription.get("cancel_at_period_end"))

        if cancel_at_period_end:
            subscription.status = SubscriptionStatus.CANCELED
        elif stripe_subscription.get("status") in [s.value for s in SubscriptionStatus]:
            subscription.status = SubscriptionStatus(stripe_subscription["status"])
        else:
            subscription.status = SubscriptionStatus.ACTIVE

        subscription.cancel_at_period_end = cancel_at_period_end
        subscription.canceled_at = from_timestamp(stripe_subscription.get("canceled_at"))
        period_start, period_end = self._subscription_period(stripe_subscription)
        subscription.current_period_start = period_start or subscription.current_period_start
        subscription.current_period_end = period_end or subscription.current_period_end

        if plan:
            subscription.plan_id = plan.id
            user = await self.session.get(User, subscription.user_id)
            if user:
                user.plan_slug = plan.slug
                self.session.add(user)

        self.session.add(subscription)
        logger.info(f"Subscription {stripe_subscription['id']} updated")

    async def handle_subscription_deleted(self, stripe_subscription) -> None:
        stripe_subscription_id = stripe_subscription["id"]
        subscription = await self._get_subscription(stripe_subscription_id)
        if subscription:
            user = await self.session.get(User, subscription.user_id)
            subscription.status = SubscriptionStatus.CANCELED
            subscription.canceled_at = subscription.canceled_at or utc_now()
            self.session.add(subscription)
        else:
            user = await self._resolve_user(
                stripe_subscription.get("metadata"),
                object_id(stripe_subscription.get("customer")),
            )
        if user is None:
            logger.warning(f"No user found for deleted subscription {stripe_subscription_id}")
            return

        free_plan = await self._get_plan_by_slug(FREE_PLAN_SLUG)
        free_credits = (
            free_plan.credits_per_month
            if free_plan
            else PLAN_CATALOG[FREE_PLAN_SLUG].credits
        )

        user.plan_slug = FREE_PLAN_SLUG
        self.session.add(user)
        await self.session.flush()
        await self.ledger.reset(
            user.id,
            free_credits,
            transaction_type=TransactionType.ADJUSTMENT,
            reference_id=stripe_subscription_id,
            description="Subscription canceled, downgraded to free plan",
        )

        organization = await self._get_owned_organization(user.id)
        if organization:
            # the organization is kept, only its credits are cleared
            await self.ledger.zero_pool(organization)

        logger.info(
            f"Subscription {stripe_subscription_id} deleted, user {user.id} downgraded to free"
        )

    async def handle_payment_intent_succeeded(self, payment_intent) -> None:
        logger.info(f"Payment intent {payment_intent.get('id')} succeeded")
