"""
Admin API for master key operations.

Lets an operator inspect accounts and recover billing state without the UI:
1. List accounts with balance and usage
2. Adjust a user's balance
3. Repair a subscription whose webhooks were missed

Authentication: Bearer token with MASTER_API_KEY value
"""
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies import get_billing_service
from app.models import Account, Artifact
from app.services.billing_service import BillingService
from app.services.ledger_service import LedgerService

router = APIRouter(prefix="/api/admin", tags=["Admin"])


class AdjustCreditsRequest(BaseModel):
    """Request to add (or remove, if negative) credits."""
    delta: int
    note: Optional[str] = None


async def verify_master_key(request: Request) -> bool:
    """Verify the master API key from Authorization header."""
    if not settings.MASTER_API_KEY:
        raise HTTPException(
            status_code=503,
            detail="Master API key not configured. Set MASTER_API_KEY environment variable."
        )

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization header. Use: Authorization: Bearer <MASTER_API_KEY>"
        )

    provided_key = auth_header[7:]
    if not secrets.compare_digest(provided_key, settings.MASTER_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid master API key")

    return True


@router.get("/users")
async def list_users(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    List all accounts with balance, credits spent and image count.

    **Request:**
    ```
    GET /api/admin/users
    Authorization: Bearer <MASTER_API_KEY>
    ```
    """
    await verify_master_key(request)

    usage = (
        select(
            Artifact.user_id,
            func.count(Artifact.id).label("image_count"),
            func.coalesce(func.sum(Artifact.credits_charged), 0).label("credits_used"),
        )
        .group_by(Artifact.user_id)
        .subquery()
    )
    result = await db.execute(
        select(Account, usage.c.image_count, usage.c.credits_used)
        .outerjoin(usage, usage.c.user_id == Account.id)
        .order_by(Account.created_at.desc())
    )
    rows = result.all()

    users = [
        {
            "id": account.id,
            "email": account.email,
            "credits": account.credits,
            "credits_used": int(credits_used or 0),
            "image_count": int(image_count or 0),
            "created_at": account.created_at.isoformat() if account.created_at else None,
        }
        for account, image_count, credits_used in rows
    ]
    return {
        "users": users,
        "total_users": len(users),
        "total_images": sum(u["image_count"] for u in users),
        "total_credits": sum(u["credits"] for u in users),
        "total_credits_used": sum(u["credits_used"] for u in users),
    }


@router.post("/users/{user_id}/credits")
async def adjust_credits(
    user_id: str,
    body: AdjustCreditsRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Adjust a user's balance by a delta.

    **Request:**
    ```
    POST /api/admin/users/{user_id}/credits
    Authorization: Bearer <MASTER_API_KEY>
    Content-Type: application/json

    {"delta": 50, "note": "Refund for failed upload"}
    ```
    """
    await verify_master_key(request)

    ledger = LedgerService(db)
    if await ledger.get_account(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    balance = await ledger.adjust_balance(user_id, body.delta, commit=False)
    await ledger.record_transaction(user_id, "admin_adjustment", credits=body.delta, note=body.note)
    return {"user_id": user_id, "credits": balance}


@router.post("/users/{user_id}/repair-subscription")
async def repair_subscription(
    user_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: BillingService = Depends(get_billing_service),
):
    """
    Recover a user's subscription from Stripe and grant one period of credits.

    Not idempotent: each call grants credits again. Use once per missed period.

    **Request:**
    ```
    POST /api/admin/users/{user_id}/repair-subscription
    Authorization: Bearer <MASTER_API_KEY>
    ```
    """
    await verify_master_key(request)

    account = await LedgerService(db).get_account(user_id)
    if account is None:
        raise HTTPException(status_code=404, detail="User not found")

    result = await service.repair_subscription(user_id, account.email)
    return {
        "subscription_id": result.subscription_id,
        "status": result.status,
        "credits_granted": result.credits_granted,
        "credits": result.balance,
        "subscriptions": result.subscriptions,
    }
