from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Principal, get_current_principal
from app.database import get_db
from app.providers.pricing import list_offers
from app.services.ledger_service import LedgerService

router = APIRouter(prefix="/api")


@router.get("/user-info")
async def get_user_info(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Current balance. The first call for a user creates their account with the
    welcome credits.
    """
    ledger = LedgerService(db)
    is_new = await ledger.get_account(principal.user_id) is None
    account = await ledger.get_or_create_account(principal.user_id, principal.email)

    return {
        "credits": account.credits,
        "email": principal.email,
        "is_new": is_new,
    }


@router.get("/pricing")
async def get_pricing():
    """Credit packages and the monthly plan."""
    return list_offers()
