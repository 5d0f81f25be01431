"""
Request-scoped access to process-wide collaborators.

Adapters, byte storage and the payment processor are built once in the
application lifespan and stored on app.state; these dependencies hand them
to routes so tests can swap them on the app instead of patching modules.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.billing_service import BillingService
from app.services.generation_service import GenerationService
from app.services.payment_processor import PaymentProcessor
from app.services.storage import ByteStorage


def get_adapters(request: Request) -> dict:
    return request.app.state.adapters


def get_storage(request: Request) -> ByteStorage:
    return request.app.state.storage


def get_payment_processor(request: Request) -> PaymentProcessor:
    return request.app.state.payment_processor


def get_generation_service(
    db: AsyncSession = Depends(get_db),
    adapters: dict = Depends(get_adapters),
    storage: ByteStorage = Depends(get_storage),
) -> GenerationService:
    return GenerationService(db, adapters, storage)


def get_billing_service(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> BillingService:
    return BillingService(db, processor)
