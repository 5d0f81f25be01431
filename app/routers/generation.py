"""
Generation, edit and image deletion endpoints.

Generate and edit run through GenerationService; failures surface as ServiceError and are
rendered by the handler in app.main (credit cost and balance included for
insufficient-credits).
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Principal, get_current_principal
from app.database import get_db
from app.dependencies import get_generation_service, get_storage
from app.providers.models import get_active_models, get_all_supported_ratios
from app.services.artifact_service import ArtifactService
from app.services.generation_service import DEFAULT_EDIT_STRENGTH, GenerationOutcome, GenerationService
from app.services.storage import ByteStorage

router = APIRouter(prefix="/api")


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    model: str
    aspect_ratio: str = "1:1"


class EditRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    model: str
    aspect_ratio: str = "1:1"
    image_url: str  # https:// or data: URL
    strength: float = Field(DEFAULT_EDIT_STRENGTH, ge=0.0, le=1.0)
    source_image_id: Optional[str] = None


class GenerationResponse(BaseModel):
    image_url: str
    image_id: str
    model: str
    mime_type: str
    credits_charged: int
    remaining_balance: int
    message: str


def _to_response(outcome: GenerationOutcome, message: str) -> GenerationResponse:
    return GenerationResponse(
        image_url=outcome.public_url,
        image_id=outcome.artifact_id,
        model=outcome.model_id,
        mime_type=outcome.mime_type,
        credits_charged=outcome.credits_charged,
        remaining_balance=outcome.remaining_balance,
        message=message,
    )


@router.post("/generate", response_model=GenerationResponse)
async def generate_image(
    body: GenerateRequest,
    principal: Principal = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    """Generate an image and charge the model's credit cost."""
    outcome = await service.generate(
        user_id=principal.user_id,
        prompt=body.prompt,
        model_id=body.model,
        ratio=body.aspect_ratio,
        email=principal.email,
    )
    return _to_response(outcome, "Image generated and saved successfully")


@router.post("/edit", response_model=GenerationResponse)
async def edit_image(
    body: EditRequest,
    principal: Principal = Depends(get_current_principal),
    service: GenerationService = Depends(get_generation_service),
):
    """Edit an existing image. The result is tagged `edited` and linked to its source."""
    outcome = await service.edit(
        user_id=principal.user_id,
        prompt=body.prompt,
        model_id=body.model,
        ratio=body.aspect_ratio,
        source_image=body.image_url,
        strength=body.strength,
        source_artifact_id=body.source_image_id,
        email=principal.email,
    )
    return _to_response(outcome, "Image edited and saved successfully")


@router.get("/models")
async def list_models():
    """Active models with cost, tier and supported ratios."""
    return {
        "models": [m.to_dict() for m in get_active_models()],
        "aspect_ratios": get_all_supported_ratios(),
    }


@router.delete("/images/{image_id}")
async def delete_image(
    image_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    storage: ByteStorage = Depends(get_storage),
):
    """Delete one of the caller's images, bytes first, then the record."""
    await ArtifactService(db).delete(image_id, principal.user_id, storage)
    return {"deleted": True, "image_id": image_id}
