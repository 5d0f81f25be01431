"""
Stripe billing endpoints.

The webhook verifies the Stripe-Signature header before anything else; an
invalid signature is rejected with no state change. Everything after
verification lives in BillingService.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from app.auth import Principal, get_current_principal
from app.dependencies import get_billing_service, get_payment_processor
from app.errors import SignatureInvalidError
from app.providers.pricing import SUBSCRIPTION_PLAN
from app.services.billing_service import BillingService
from app.services.payment_processor import PaymentProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class CreateCheckoutRequest(BaseModel):
    type: str  # "credits" or "subscription"
    package_id: Optional[str] = None


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    processor: PaymentProcessor = Depends(get_payment_processor),
    service: BillingService = Depends(get_billing_service),
):
    """Receive a Stripe event. Acknowledged unless the signature or metadata is bad."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = processor.verify_event(payload, signature)
    except SignatureInvalidError as e:
        logger.warning("Rejected Stripe webhook", extra={"reason": e.message})
        raise

    result = await service.handle_event(event)
    return {"received": True, **result.to_dict()}


@router.post("/stripe/create-checkout")
async def create_checkout(
    body: CreateCheckoutRequest,
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """Start a hosted checkout for a credit package or the monthly plan."""
    await service.ledger.get_or_create_account(principal.user_id, principal.email)
    return await service.create_checkout(
        user_id=principal.user_id,
        email=principal.email,
        payment_type=body.type,
        package_id=body.package_id,
    )


@router.post("/stripe/customer-portal")
async def customer_portal(
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """Billing portal link for the user's active subscription."""
    url = await service.create_portal(principal.user_id)
    return {"url": url}


@router.get("/subscription-status")
async def subscription_status(
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """Report the user's most recent subscription record."""
    subscription = await service.get_current_subscription(principal.user_id)
    if subscription is None:
        return {"has_subscription": False, "status": None, "plan": None}

    return {
        "has_subscription": True,
        "status": subscription.status,
        "plan": {
            "name": SUBSCRIPTION_PLAN.name,
            "amount": f"${SUBSCRIPTION_PLAN.price:.0f}/{SUBSCRIPTION_PLAN.interval}",
            "credits": SUBSCRIPTION_PLAN.credits_per_period,
        },
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "current_period_end": subscription.current_period_end.isoformat() if subscription.current_period_end else None,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "cancel_at": subscription.cancel_at.isoformat() if subscription.cancel_at else None,
        "canceled_at": subscription.canceled_at.isoformat() if subscription.canceled_at else None,
    }


@router.post("/cancel-subscription")
async def cancel_subscription(
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """Cancel the active subscription at the end of the current billing period."""
    result = await service.cancel_subscription(principal.user_id)
    return {
        **result,
        "message": "Subscription will be canceled at the end of the current billing period",
    }


@router.post("/fix-subscription")
async def fix_subscription(
    principal: Principal = Depends(get_current_principal),
    service: BillingService = Depends(get_billing_service),
):
    """
    Self-service recovery for a subscription whose webhook never arrived.

    Grants one period of credits per active subscription on every call.
    """
    result = await service.repair_subscription(principal.user_id, principal.email)
    return {
        "success": True,
        "subscription_id": result.subscription_id,
        "status": result.status,
        "credits_granted": result.credits_granted,
        "credits": result.balance,
        "subscriptions": result.subscriptions,
    }
