"""
Credit packages and subscription plans.

Prices are in US cents, matching what Stripe expects for `unit_amount`.
Credits granted for a purchase travel in checkout session metadata so the
webhook handler never has to look a package up again.
"""

from dataclasses import dataclass
from typing import Optional

from app.config import settings


@dataclass(frozen=True)
class CreditPackage:
    """One-time credit purchase."""
    id: str
    name: str
    credits: int
    price_cents: int
    description: str = ""

    @property
    def price(self) -> float:
        """Price in dollars."""
        return self.price_cents / 100


@dataclass(frozen=True)
class SubscriptionPlan:
    """Recurring plan granting a fixed number of credits per billing period."""
    id: str
    name: str
    credits_per_period: int
    price_cents: int
    interval: str = "month"
    description: str = ""

    @property
    def price(self) -> float:
        return self.price_cents / 100


CREDIT_PACKAGES = {
    "credits_100": CreditPackage(
        id="credits_100",
        name="100 Credits",
        credits=100,
        price_cents=1000,
        description="Good for trying out the premium models",
    ),
    "credits_250": CreditPackage(
        id="credits_250",
        name="250 Credits",
        credits=250,
        price_cents=2000,
        description="Best for regular creators",
    ),
    "credits_500": CreditPackage(
        id="credits_500",
        name="500 Credits",
        credits=500,
        price_cents=3500,
        description="Best value per credit",
    ),
}

SUBSCRIPTION_PLAN = SubscriptionPlan(
    id="monthly_400_credits",
    name="Monthly Creator",
    credits_per_period=settings.SUBSCRIPTION_MONTHLY_CREDITS,
    price_cents=int(round(settings.SUBSCRIPTION_PRICE * 100)),
    description=f"{settings.SUBSCRIPTION_MONTHLY_CREDITS} credits every month",
)


def get_credit_package(package_id: str) -> Optional[CreditPackage]:
    return CREDIT_PACKAGES.get(package_id)


def list_offers() -> dict:
    """Packages and plan in a JSON-friendly shape for the pricing endpoint."""
    return {
        "packages": [
            {
                "id": p.id,
                "name": p.name,
                "credits": p.credits,
                "price": p.price,
                "description": p.description,
            }
            for p in CREDIT_PACKAGES.values()
        ],
        "subscription": {
            "id": SUBSCRIPTION_PLAN.id,
            "name": SUBSCRIPTION_PLAN.name,
            "credits": SUBSCRIPTION_PLAN.credits_per_period,
            "price": SUBSCRIPTION_PLAN.price,
            "interval": SUBSCRIPTION_PLAN.interval,
            "description": SUBSCRIPTION_PLAN.description,
        },
    }
