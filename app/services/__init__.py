"""
Service layer for PromptForge.

Services encapsulate business logic and database operations,
providing a clean interface for routes and other consumers.
"""
from app.services.artifact_service import ArtifactService
from app.services.billing_service import BillingService
from app.services.generation_service import GenerationService
from app.services.ledger_service import LedgerService

__all__ = [
    "ArtifactService",
    "BillingService",
    "GenerationService",
    "LedgerService",
]
