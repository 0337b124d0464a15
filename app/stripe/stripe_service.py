from typing import Dict, Optional

import stripe

from app.config import Settings


class StripeService:
    """Thin wrapper over the stripe SDK that passes the configured key on every
    call instead of setting it module-wide."""

    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.STRIPE_SECRET_KEY
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        self.stripe = stripe

    def _require_key(self) -> str:
        if not self.api_key:
            raise ValueError("STRIPE_SECRET_KEY is not configured")
        return self.api_key

    def construct_event(self, payload: str, signature: str):
        return self.stripe.Webhook.construct_event(
            payload, signature, self.webhook_secret
        )

    def create_customer(self, email: str, name: Optional[str] = None):
        return self.stripe.Customer.create(
            api_key=self._require_key(),
            email=email,
            name=name,
        )

    def create_checkout_session(
        self,
        mode: str,
        customer: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ):
        params = {
            "mode": mode,
            "customer": customer,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if mode == "subscription":
            params["subscription_data"] = {"metadata": metadata}
        return self.stripe.checkout.Session.create(api_key=self._require_key(), **params)

    def subscription_details_by_id(self, subscription_id: str):
        return self.stripe.Subscription.retrieve(
            subscription_id, api_key=self._require_key()
        )
