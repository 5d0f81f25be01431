"""
Artifact service - generated image records and their stored bytes.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError
from app.models import Artifact
from app.services.storage import ByteStorage

logger = logging.getLogger(__name__)


class ArtifactService:
    """Service for ArtifactRecord CRUD."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, artifact_id: str, user_id: Optional[str] = None) -> Optional[Artifact]:
        """Get an artifact by ID, optionally verifying ownership."""
        query = select(Artifact).where(Artifact.id == artifact_id)
        if user_id:
            query = query.where(Artifact.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_all_for_user(self, user_id: str, limit: int = 100) -> list[Artifact]:
        result = await self.db.execute(
            select(Artifact)
            .where(Artifact.user_id == user_id)
            .order_by(Artifact.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_all(self) -> list[Artifact]:
        result = await self.db.execute(select(Artifact).order_by(Artifact.created_at))
        return list(result.scalars().all())

    async def create(
        self,
        user_id: str,
        prompt: str,
        model_id: str,
        aspect_ratio: str,
        storage_path: str,
        file_name: str,
        public_url: str,
        mime_type: str,
        credits_charged: int,
        tags: Optional[list[str]] = None,
        edited_from_id: Optional[str] = None,
    ) -> Artifact:
        """Insert and commit an artifact record."""
        artifact = Artifact(
            user_id=user_id,
            prompt=prompt,
            model_id=model_id,
            aspect_ratio=aspect_ratio,
            storage_path=storage_path,
            file_name=file_name,
            public_url=public_url,
            mime_type=mime_type,
            credits_charged=credits_charged,
            tags=tags or [],
            edited_from_id=edited_from_id,
        )
        self.db.add(artifact)
        await self.db.commit()
        await self.db.refresh(artifact)
        return artifact

    async def update_location(
        self,
        artifact: Artifact,
        storage_path: str,
        file_name: str,
        public_url: str,
        mime_type: str,
    ) -> Artifact:
        """Point a record at a re-stored object (format repair)."""
        artifact.storage_path = storage_path
        artifact.file_name = file_name
        artifact.public_url = public_url
        artifact.mime_type = mime_type
        await self.db.commit()
        await self.db.refresh(artifact)
        return artifact

    async def delete(self, artifact_id: str, user_id: str, storage: ByteStorage) -> None:
        """
        Remove an artifact's stored bytes and its record.

        The storage delete is idempotent, so a record whose object is already
        gone is still removed.
        """
        artifact = await self.get_by_id(artifact_id, user_id=user_id)
        if not artifact:
            raise NotFoundError("Image not found")

        await storage.delete(artifact.storage_path)
        await self.db.delete(artifact)
        await self.db.commit()

        logger.info("Deleted artifact", extra={"user_id": user_id, "artifact_id": artifact_id})
