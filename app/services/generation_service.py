"""
Generation dispatcher.

One request moves through:

    Validated -> BalanceChecked -> Invoked -> Normalized -> Persisted -> Debited

Every failure before Debited leaves the balance untouched, so a user is
charged exactly when an artifact record exists for the charge. The debit
runs after the record is committed; a crash between the two is the one
accepted inconsistency (an uncharged artifact), left for offline audit.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.adapters.base import GenerationResult, ImageAdapter
from app.config import settings
from app.errors import (
    EditNotSupportedError,
    InactiveModelError,
    InsufficientCreditsError,
    StorageError,
    UnknownModelError,
    UnsupportedRatioError,
    UpstreamBadResponseError,
    UpstreamError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.providers.formats import resolve_format
from app.providers.models import ModelCapability, is_ratio_supported, resolve
from app.services.artifact_service import ArtifactService
from app.services.ledger_service import LedgerService
from app.services.storage import ByteStorage

logger = logging.getLogger(__name__)

DEFAULT_EDIT_STRENGTH = 0.8

SOURCE_IMAGE_SCHEMES = ("https://", "http://", "data:")


@dataclass
class GenerationOutcome:
    artifact_id: str
    public_url: str
    credits_charged: int
    remaining_balance: int
    model_id: str
    mime_type: str


class GenerationService:
    """Runs generate/edit requests end to end against an injected set of adapters."""

    def __init__(
        self,
        db: AsyncSession,
        adapters: Mapping,
        storage: ByteStorage,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.adapters = adapters
        self.storage = storage
        self.timeout = timeout if timeout is not None else settings.GENERATION_TIMEOUT
        self.ledger = LedgerService(db)
        self.artifacts = ArtifactService(db)

    def _adapter_for(self, capability: ModelCapability) -> ImageAdapter:
        return self.adapters[capability.provider]

    def validate(self, model_id: str, ratio: str, editing: bool = False) -> ModelCapability:
        """Resolve a model for dispatch. Raises a ValidationError subclass; no side effects."""
        capability = resolve(model_id)
        if capability is None:
            raise UnknownModelError(f"Unknown model: {model_id}", context={"model": model_id})

        if not capability.is_active:
            raise InactiveModelError(
                f"{capability.name} has been deprecated and can no longer be used",
                context={"model": model_id},
            )

        if not is_ratio_supported(capability, ratio):
            raise UnsupportedRatioError(
                f"{capability.name} does not support aspect ratio {ratio}",
                context={"model": model_id, "aspect_ratio": ratio, "supported_ratios": list(capability.supported_ratios)},
            )

        if editing and not self._adapter_for(capability).can_edit(capability):
            raise EditNotSupportedError(
                f"{capability.name} does not support image editing",
                context={"model": model_id},
            )
        return capability

    async def generate(
        self,
        user_id: str,
        prompt: str,
        model_id: str,
        ratio: str,
        email: Optional[str] = None,
    ) -> GenerationOutcome:
        prompt = _require_prompt(prompt)
        capability = self.validate(model_id, ratio)
        await self._check_balance(user_id, capability, email)

        adapter = self._adapter_for(capability)
        result = await self._invoke(capability, adapter.generate(prompt, capability, ratio))

        return await self._persist_and_debit(
            user_id=user_id,
            prompt=prompt,
            capability=capability,
            ratio=ratio,
            result=result,
            file_prefix="",
            tags=[],
            edited_from_id=None,
        )

    async def edit(
        self,
        user_id: str,
        prompt: str,
        model_id: str,
        ratio: str,
        source_image: str,
        strength: float = DEFAULT_EDIT_STRENGTH,
        source_artifact_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> GenerationOutcome:
        prompt = _require_prompt(prompt)
        if not source_image or not source_image.startswith(SOURCE_IMAGE_SCHEMES):
            raise ValidationError("Source image must be an http(s) URL or a data: URL")
        if not 0.0 <= strength <= 1.0:
            raise ValidationError("Edit strength must be between 0 and 1", context={"strength": strength})

        capability = self.validate(model_id, ratio, editing=True)

        if source_artifact_id:
            source = await self.artifacts.get_by_id(source_artifact_id, user_id=user_id)
            if source is None:
                raise ValidationError(
                    "Source image not found",
                    context={"source_artifact_id": source_artifact_id},
                )

        await self._check_balance(user_id, capability, email)

        adapter = self._adapter_for(capability)
        result = await self._invoke(
            capability,
            adapter.edit(prompt, capability, ratio, source_image, strength),
        )

        return await self._persist_and_debit(
            user_id=user_id,
            prompt=prompt,
            capability=capability,
            ratio=ratio,
            result=result,
            file_prefix="edit_",
            tags=["edited"],
            edited_from_id=source_artifact_id,
        )

    async def _check_balance(self, user_id: str, capability: ModelCapability, email: Optional[str]) -> int:
        await self.ledger.get_or_create_account(user_id, email)
        balance = await self.ledger.get_balance(user_id)
        if balance < capability.credits:
            logger.info(
                "Insufficient credits",
                extra={"user_id": user_id, "model": capability.id, "required": capability.credits, "credits": balance},
            )
            raise InsufficientCreditsError(
                f"You need {capability.credits} credits to use {capability.name}. "
                f"You currently have {balance} credits.",
                required=capability.credits,
                balance=balance,
                context={"model": capability.id},
            )
        return balance

    async def _invoke(self, capability: ModelCapability, call) -> GenerationResult:
        """Await an adapter call under the dispatch time bound."""
        started = time.time()
        try:
            result = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "Generation timed out",
                extra={"model": capability.id, "provider": capability.provider.value, "timeout": self.timeout},
            )
            raise UpstreamUnavailableError(
                f"{capability.name} did not respond within {int(self.timeout)} seconds",
                provider=capability.provider.value,
            ) from e
        except UpstreamError as e:
            logger.warning(
                "Generation failed upstream",
                extra={"model": capability.id, "provider": capability.provider.value, "kind": e.kind},
            )
            raise

        if not result.image_bytes:
            raise UpstreamBadResponseError(
                f"{capability.name} returned an empty image",
                provider=capability.provider.value,
            )

        logger.info(
            "Generation completed",
            extra={
                "model": capability.id,
                "provider": capability.provider.value,
                "latency_ms": int((time.time() - started) * 1000),
                "bytes": len(result.image_bytes),
            },
        )
        return result

    async def _persist_and_debit(
        self,
        user_id: str,
        prompt: str,
        capability: ModelCapability,
        ratio: str,
        result: GenerationResult,
        file_prefix: str,
        tags: list,
        edited_from_id: Optional[str],
    ) -> GenerationOutcome:
        # Re-derive from bytes; adapters may hand back whatever they were told
        fmt = resolve_format(result.image_bytes, result.mime_type)

        file_name = f"{file_prefix}{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{fmt.extension}"
        storage_path = f"images/{user_id}/{file_name}"
        public_url = await self.storage.put(storage_path, result.image_bytes, fmt.mime_type)

        try:
            artifact = await self.artifacts.create(
                user_id=user_id,
                prompt=prompt,
                model_id=capability.id,
                aspect_ratio=ratio,
                storage_path=storage_path,
                file_name=file_name,
                public_url=public_url,
                mime_type=fmt.mime_type,
                credits_charged=capability.credits,
                tags=tags,
                edited_from_id=edited_from_id,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to save artifact record",
                extra={"user_id": user_id, "model": capability.id, "path": storage_path, "error": str(e)},
            )
            await self._discard(storage_path)
            raise StorageError("Failed to save image. You have not been charged.") from e

        try:
            remaining = await self.ledger.adjust_balance(user_id, -capability.credits)
        except SQLAlchemyError:
            logger.exception(
                "Debit failed after artifact was saved",
                extra={"user_id": user_id, "artifact_id": artifact.id, "credits": capability.credits},
            )
            raise

        logger.info(
            "Artifact saved and charged",
            extra={
                "user_id": user_id,
                "artifact_id": artifact.id,
                "model": capability.id,
                "credits": capability.credits,
                "balance": remaining,
            },
        )
        return GenerationOutcome(
            artifact_id=artifact.id,
            public_url=public_url,
            credits_charged=capability.credits,
            remaining_balance=remaining,
            model_id=capability.id,
            mime_type=fmt.mime_type,
        )

    async def _discard(self, storage_path: str) -> None:
        try:
            await self.storage.delete(storage_path)
        except StorageError as e:
            logger.error("Failed to remove orphaned image", extra={"path": storage_path, "error": str(e)})


def _require_prompt(prompt: str) -> str:
    prompt = (prompt or "").strip()
    if not prompt:
        raise ValidationError("Prompt is required")
    return prompt
