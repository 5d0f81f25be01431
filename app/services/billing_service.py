"""
Billing reconciliation.

Applies Stripe webhook events to local Subscription and Transaction records
and grants credits through the ledger. Events arrive at least once, in any
order, possibly concurrently with each other and with generation traffic,
so every handler is safe to replay:

- checkout.session.completed      credits keyed by session id; creates the
                                  subscription record for subscription checkouts
- customer.subscription.updated   mirrors status onto an existing record
- customer.subscription.deleted   (never creates one)
- invoice.payment_succeeded       renewal credits keyed by invoice id; the
- invoice.paid                    first invoice is already covered by checkout

Manual repair is the exception: it grants unconditionally, because it exists
to recover from webhooks that never arrived and is run by hand.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import MissingMetadataError, NotFoundError, ValidationError
from app.models import Subscription, utc_now
from app.providers.pricing import SUBSCRIPTION_PLAN, get_credit_package
from app.services.ledger_service import LedgerService
from app.services.payment_processor import PaymentProcessor

logger = logging.getLogger(__name__)

# Local period assumed for a subscription created from a checkout session
INITIAL_PERIOD = timedelta(days=30)

SUBSCRIPTION_STATUS_EVENTS = ("customer.subscription.updated", "customer.subscription.deleted")
INVOICE_PAID_EVENTS = ("invoice.payment_succeeded", "invoice.paid")


def _from_unix(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _object_id(value: Any) -> Optional[str]:
    """Stripe fields hold either an id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    sub_id = _object_id(invoice.get("subscription"))
    if sub_id:
        return sub_id
    # Newer API versions nest it under parent.subscription_details
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _object_id(details.get("subscription"))


@dataclass
class EventResult:
    """Outcome of applying one webhook event."""
    event_type: str
    handled: bool
    action: str
    user_id: Optional[str] = None
    credits_granted: int = 0

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "handled": self.handled,
            "action": self.action,
            "credits_granted": self.credits_granted,
        }


@dataclass
class RepairResult:
    subscription_id: str
    status: str
    credits_granted: int
    balance: int
    subscriptions: list = field(default_factory=list)


class BillingService:
    """Reconciles payment-processor state with local records."""

    def __init__(self, db: AsyncSession, processor: PaymentProcessor):
        self.db = db
        self.processor = processor
        self.ledger = LedgerService(db)

    # ===========================================
    # Subscription records
    # ===========================================

    async def get_by_stripe_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_current_subscription(self, user_id: str) -> Optional[Subscription]:
        """Most recently created subscription record for the user."""
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_subscription(self, user_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status == "active")
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def ensure_subscription(
        self,
        user_id: str,
        stripe_subscription_id: str,
        stripe_customer_id: Optional[str],
        status: str = "active",
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> Subscription:
        """Return the record for a processor subscription, creating it if missing."""
        existing = await self.get_by_stripe_id(stripe_subscription_id)
        if existing:
            return existing

        now = utc_now()
        subscription = Subscription(
            user_id=user_id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=stripe_customer_id,
            status=status,
            current_period_start=period_start or now,
            current_period_end=period_end or now + INITIAL_PERIOD,
        )
        self.db.add(subscription)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent delivery created it
            await self.db.rollback()
            existing = await self.get_by_stripe_id(stripe_subscription_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Created subscription record",
            extra={"user_id": user_id, "stripe_subscription_id": stripe_subscription_id, "status": status},
        )
        await self.db.refresh(subscription)
        return subscription

    # ===========================================
    # Webhook events
    # ===========================================

    async def handle_event(self, event: dict) -> EventResult:
        """Apply one verified webhook event."""
        event_type = event.get("type", "unknown")
        obj = (event.get("data") or {}).get("object") or {}

        logger.info("Stripe event received", extra={"event_id": event.get("id"), "event_type": event_type})

        if event_type == "checkout.session.completed":
            return await self._on_checkout_completed(event_type, obj)
        if event_type in SUBSCRIPTION_STATUS_EVENTS:
            return await self._on_subscription_changed(event_type, obj)
        if event_type in INVOICE_PAID_EVENTS:
            return await self._on_invoice_paid(event_type, obj)

        return EventResult(event_type, handled=False, action="ignored")

    async def _on_checkout_completed(self, event_type: str, session: dict) -> EventResult:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        raw_credits = metadata.get("credits")
        session_id = session.get("id")

        if not user_id or raw_credits in (None, "") or not session_id:
            logger.error(
                "Checkout session missing metadata",
                extra={"session_id": session_id, "metadata": metadata},
            )
            raise MissingMetadataError("Checkout session is missing userId or credits metadata")

        try:
            credits = int(raw_credits)
        except (TypeError, ValueError) as e:
            raise MissingMetadataError(f"Invalid credits metadata: {raw_credits!r}") from e
        if credits <= 0:
            raise MissingMetadataError(f"Invalid credits metadata: {raw_credits!r}")

        payment_type = metadata.get("type", "credits")
        customer_id = _object_id(session.get("customer"))
        amount = (session.get("amount_total") or 0) / 100
        subscription_id = _object_id(session.get("subscription"))

        if payment_type == "subscription":
            balance = await self.ledger.grant_credits(
                user_id,
                credits,
                "subscription_initial",
                idempotency_key=session_id,
                amount=amount,
                stripe_session_id=session_id,
                stripe_subscription_id=subscription_id,
                stripe_customer_id=customer_id,
            )
            if subscription_id:
                await self.ensure_subscription(user_id, subscription_id, customer_id)
            else:
                logger.warning("Subscription checkout without subscription id", extra={"session_id": session_id})
        else:
            balance = await self.ledger.grant_credits(
                user_id,
                credits,
                "credit_purchase",
                idempotency_key=session_id,
                amount=amount,
                stripe_session_id=session_id,
                stripe_customer_id=customer_id,
                note=metadata.get("packageId"),
            )

        if balance is None:
            return EventResult(event_type, handled=True, action="duplicate", user_id=user_id)
        return EventResult(event_type, handled=True, action="credited", user_id=user_id, credits_granted=credits)

    async def _on_subscription_changed(self, event_type: str, sub: dict) -> EventResult:
        stripe_subscription_id = sub.get("id")
        record = await self.get_by_stripe_id(stripe_subscription_id) if stripe_subscription_id else None
        if record is None:
            logger.info(
                "Status change for unknown subscription ignored",
                extra={"stripe_subscription_id": stripe_subscription_id, "event_type": event_type},
            )
            return EventResult(event_type, handled=False, action="unknown-subscription")

        if sub.get("status"):
            record.status = sub["status"]
        if "cancel_at_period_end" in sub:
            record.cancel_at_period_end = bool(sub["cancel_at_period_end"])
        if "cancel_at" in sub:
            record.cancel_at = _from_unix(sub["cancel_at"])
        if sub.get("canceled_at"):
            record.canceled_at = _from_unix(sub["canceled_at"])
        if sub.get("current_period_start"):
            record.current_period_start = _from_unix(sub["current_period_start"])
        if sub.get("current_period_end"):
            record.current_period_end = _from_unix(sub["current_period_end"])
        record.updated_at = utc_now()
        await self.db.commit()

        logger.info(
            "Subscription status updated",
            extra={"user_id": record.user_id, "stripe_subscription_id": stripe_subscription_id, "status": record.status},
        )
        return EventResult(event_type, handled=True, action="status-updated", user_id=record.user_id)

    async def _on_invoice_paid(self, event_type: str, invoice: dict) -> EventResult:
        invoice_id = invoice.get("id")
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id or not invoice_id:
            return EventResult(event_type, handled=False, action="not-a-subscription-invoice")

        if invoice.get("billing_reason") == "subscription_create":
            # The first period was credited by checkout.session.completed
            return EventResult(event_type, handled=False, action="initial-invoice")

        record = await self.get_by_stripe_id(subscription_id)
        if record is None:
            logger.warning(
                "Invoice for unknown subscription dropped",
                extra={"invoice_id": invoice_id, "stripe_subscription_id": subscription_id},
            )
            return EventResult(event_type, handled=False, action="unknown-subscription")

        credits = SUBSCRIPTION_PLAN.credits_per_period
        balance = await self.ledger.grant_credits(
            record.user_id,
            credits,
            "subscription_renewal",
            idempotency_key=invoice_id,
            amount=(invoice.get("amount_paid") or 0) / 100,
            stripe_invoice_id=invoice_id,
            stripe_subscription_id=subscription_id,
            stripe_customer_id=_object_id(invoice.get("customer")) or record.stripe_customer_id,
        )
        if balance is None:
            return EventResult(event_type, handled=True, action="duplicate", user_id=record.user_id)
        return EventResult(event_type, handled=True, action="credited", user_id=record.user_id, credits_granted=credits)

    # ===========================================
    # User and operator actions
    # ===========================================

    async def repair_subscription(self, user_id: str, email: Optional[str]) -> RepairResult:
        """
        Recover subscriptions whose webhooks were missed.

        Looks the customer up by email, creates any missing local records and
        grants one period of credits per active subscription. The grant is not
        deduplicated: running this twice grants twice. That is deliberate for
        an operator tool; only run it once per missed period.
        """
        if not email:
            raise NotFoundError("No email on file for this user")

        customer_id = await self.processor.find_customer_id(email)
        if not customer_id:
            raise NotFoundError("No Stripe customer found for this email")

        subscriptions = await self.processor.list_active_subscriptions(customer_id)
        if not subscriptions:
            raise NotFoundError("No active subscriptions found")

        credits = SUBSCRIPTION_PLAN.credits_per_period
        total = 0
        balance = await self.ledger.get_balance(user_id)
        for sub in subscriptions:
            await self.ensure_subscription(
                user_id,
                sub["id"],
                sub.get("customer") or customer_id,
                status=sub.get("status") or "active",
                period_start=_from_unix(sub.get("current_period_start")),
                period_end=_from_unix(sub.get("current_period_end")),
            )
            balance = await self.ledger.grant_credits(
                user_id,
                credits,
                "subscription_fix",
                stripe_subscription_id=sub["id"],
                stripe_customer_id=customer_id,
                note="Manual subscription repair",
            )
            total += credits

        logger.warning(
            "Subscription repaired manually",
            extra={"user_id": user_id, "customer_id": customer_id, "credits": total, "count": len(subscriptions)},
        )
        first = subscriptions[0]
        return RepairResult(
            subscription_id=first["id"],
            status=first.get("status") or "active",
            credits_granted=total,
            balance=balance,
            subscriptions=[{"id": s["id"], "status": s.get("status")} for s in subscriptions],
        )

    async def cancel_subscription(self, user_id: str) -> dict:
        """Cancel the user's active subscription at the end of the current period."""
        record = await self.get_active_subscription(user_id)
        if record is None:
            raise NotFoundError("No active subscription found")

        updated = await self.processor.cancel_at_period_end(record.stripe_subscription_id)

        record.status = updated.get("status") or record.status
        record.cancel_at_period_end = True
        record.cancel_at = _from_unix(updated.get("cancel_at")) or _from_unix(
            updated.get("current_period_end")
        ) or record.current_period_end
        record.updated_at = utc_now()
        await self.ledger.record_transaction(
            user_id,
            "subscription_cancel",
            credits=0,
            commit=False,
            stripe_subscription_id=record.stripe_subscription_id,
            stripe_customer_id=record.stripe_customer_id,
            note="Canceled at period end",
        )
        await self.db.commit()

        logger.info(
            "Subscription set to cancel at period end",
            extra={"user_id": user_id, "stripe_subscription_id": record.stripe_subscription_id},
        )
        return {
            "status": record.status,
            "cancel_at_period_end": True,
            "effective_end": record.cancel_at.isoformat() if record.cancel_at else None,
        }

    async def create_checkout(
        self,
        user_id: str,
        email: Optional[str],
        payment_type: str,
        package_id: Optional[str] = None,
    ) -> dict:
        """Create a hosted checkout session for a credit package or the monthly plan."""
        base = {
            "customer_email": email,
            "success_url": f"{settings.APP_URL}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{settings.APP_URL}/payment/canceled",
        }

        if payment_type == "subscription":
            params = {
                **base,
                "mode": "subscription",
                "line_items": [
                    {
                        "price_data": {
                            "currency": "usd",
                            "product_data": {
                                "name": SUBSCRIPTION_PLAN.name,
                                "description": SUBSCRIPTION_PLAN.description,
                            },
                            "unit_amount": SUBSCRIPTION_PLAN.price_cents,
                            "recurring": {"interval": SUBSCRIPTION_PLAN.interval},
                        },
                        "quantity": 1,
                    }
                ],
                "metadata": {
                    "userId": user_id,
                    "type": "subscription",
                    "credits": str(SUBSCRIPTION_PLAN.credits_per_period),
                },
            }
        elif payment_type == "credits":
            package = get_credit_package(package_id or "")
            if package is None:
                raise ValidationError("Invalid credit package", context={"package_id": package_id})
            params = {
                **base,
                "mode": "payment",
                "line_items": [
                    {
                        "price_data": {
                            "currency": "usd",
                            "product_data": {"name": package.name, "description": package.description},
                            "unit_amount": package.price_cents,
                        },
                        "quantity": 1,
                    }
                ],
                "metadata": {
                    "userId": user_id,
                    "type": "credits",
                    "credits": str(package.credits),
                    "packageId": package.id,
                },
            }
        else:
            raise ValidationError("Invalid payment type", context={"type": payment_type})

        session = await self.processor.create_checkout_session(params)
        logger.info(
            "Checkout session created",
            extra={"user_id": user_id, "type": payment_type, "package_id": package_id, "session_id": session.get("id")},
        )
        return {"session_id": session.get("id"), "url": session.get("url")}

    async def create_portal(self, user_id: str) -> str:
        record = await self.get_active_subscription(user_id)
        if record is None:
            raise NotFoundError("No active subscription found")
        if not record.stripe_customer_id:
            raise NotFoundError("Customer ID not found")
        return await self.processor.create_portal_session(record.stripe_customer_id, f"{settings.APP_URL}/")
