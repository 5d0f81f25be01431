"""
Payment processor boundary.

BillingService talks to Stripe only through this interface so webhook
handling and subscription repair can run against a fake in tests. The
Stripe SDK is synchronous; calls run in the threadpool.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import stripe
from fastapi.concurrency import run_in_threadpool

from app.errors import PaymentProcessorError, SignatureInvalidError

logger = logging.getLogger(__name__)

# Seconds of clock skew accepted on webhook signatures
WEBHOOK_TOLERANCE = 300


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a Stripe object or dict without caring which it is."""
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _subscription_summary(sub: Any) -> dict:
    """Plain dict of the subscription fields billing needs."""
    period_start = _field(sub, "current_period_start")
    period_end = _field(sub, "current_period_end")
    if period_start is None or period_end is None:
        # Newer API versions keep the period on the subscription items
        items = _field(_field(sub, "items", {}), "data", [])
        if items:
            period_start = period_start or _field(items[0], "current_period_start")
            period_end = period_end or _field(items[0], "current_period_end")

    customer = _field(sub, "customer")
    if not isinstance(customer, str):
        customer = _field(customer, "id")

    return {
        "id": _field(sub, "id"),
        "status": _field(sub, "status"),
        "customer": customer,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": bool(_field(sub, "cancel_at_period_end", False)),
        "cancel_at": _field(sub, "cancel_at"),
        "canceled_at": _field(sub, "canceled_at"),
    }


class PaymentProcessor(ABC):
    """Operations billing needs from a payment processor."""

    @abstractmethod
    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """Check the signature and parse the event. Raises SignatureInvalidError."""

    @abstractmethod
    async def find_customer_id(self, email: str) -> Optional[str]:
        """Processor customer id for an email, if any."""

    @abstractmethod
    async def list_active_subscriptions(self, customer_id: str) -> list[dict]:
        """Active subscriptions for a customer as plain dicts."""

    @abstractmethod
    async def cancel_at_period_end(self, subscription_id: str) -> dict:
        """Schedule cancellation at period end and return the updated subscription."""

    @abstractmethod
    async def create_checkout_session(self, params: dict) -> dict:
        """Create a hosted checkout session. Returns {"id", "url"}."""

    @abstractmethod
    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""


class StripeProcessor(PaymentProcessor):
    """PaymentProcessor backed by the Stripe API."""

    def __init__(self, secret_key: str, webhook_secret: str):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if not self.webhook_secret:
            logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise SignatureInvalidError("Webhook secret not configured")
        if not signature:
            raise SignatureInvalidError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret, tolerance=WEBHOOK_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError(f"Signature verification failed: {e}") from e
        except ValueError as e:
            # Body is not UTF-8 or not JSON
            logger.warning("Unreadable webhook payload", extra={"error": str(e)})
            raise SignatureInvalidError("Webhook payload is not a readable Stripe event") from e

        event = event.to_dict()
        if "type" not in event:
            raise SignatureInvalidError("Webhook payload is not a Stripe event")
        return event

    async def _call(self, description: str, fn, *args, **kwargs):
        if not self.secret_key:
            raise PaymentProcessorError("Stripe is not configured")
        try:
            return await run_in_threadpool(fn, *args, api_key=self.secret_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe call failed: {description}", extra={"error": str(e)})
            raise PaymentProcessorError(f"Payment processor error: {e.user_message or str(e)}") from e

    async def find_customer_id(self, email: str) -> Optional[str]:
        customers = await self._call("list customers", stripe.Customer.list, email=email, limit=1)
        data = _field(customers, "data", [])
        return _field(data[0], "id") if data else None

    async def list_active_subscriptions(self, customer_id: str) -> list[dict]:
        subscriptions = await self._call(
            "list subscriptions",
            stripe.Subscription.list,
            customer=customer_id,
            status="active",
            limit=10,
        )
        return [_subscription_summary(sub) for sub in _field(subscriptions, "data", [])]

    async def cancel_at_period_end(self, subscription_id: str) -> dict:
        sub = await self._call(
            "cancel subscription",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
        )
        return _subscription_summary(sub)

    async def create_checkout_session(self, params: dict) -> dict:
        session = await self._call("create checkout session", stripe.checkout.Session.create, **params)
        return {"id": _field(session, "id"), "url": _field(session, "url")}

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "create portal session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return _field(session, "url")
