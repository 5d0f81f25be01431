"""Tests for GenerationService (the dispatcher)."""
import os

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.errors import (
    EditNotSupportedError,
    InactiveModelError,
    InsufficientCreditsError,
    StorageError,
    UnknownModelError,
    UnsupportedRatioError,
    UpstreamBadResponseError,
    UpstreamRejectedInputError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.models import Account, Artifact
from app.providers.models import Provider, get_active_models
from app.services.generation_service import GenerationService
from app.services.ledger_service import LedgerService
from app.services.storage import LocalByteStorage

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01" + b"\x00" * 24


async def seed_balance(session, user_id: str, credits: int):
    session.add(Account(id=user_id, email=f"{user_id}@example.com", credits=credits))
    await session.commit()


async def artifact_count(session, user_id: str) -> int:
    return await session.scalar(select(func.count(Artifact.id)).where(Artifact.user_id == user_id))


def stored_files(storage: LocalByteStorage) -> list:
    if not storage.root.exists():
        return []
    return [os.path.join(d, f) for d, _, files in os.walk(storage.root) for f in files]


class TestValidate:

    def test_unknown_model(self, fake_adapters, storage):
        service = GenerationService(None, fake_adapters, storage)
        with pytest.raises(UnknownModelError):
            service.validate("not-a-model", "1:1")

    def test_inactive_model(self, fake_adapters, storage):
        service = GenerationService(None, fake_adapters, storage)
        with pytest.raises(InactiveModelError):
            service.validate("flux-dev", "1:1")

    def test_unsupported_ratio_lists_supported(self, fake_adapters, storage):
        service = GenerationService(None, fake_adapters, storage)
        with pytest.raises(UnsupportedRatioError) as exc_info:
            service.validate("flux-schnell", "21:9")
        assert exc_info.value.kind == "validation-error"
        assert "1:1" in exc_info.value.context["supported_ratios"]

    def test_every_supported_pair_validates(self, fake_adapters, storage):
        service = GenerationService(None, fake_adapters, storage)
        for model in get_active_models():
            for ratio in model.supported_ratios:
                assert service.validate(model.id, ratio) is model

    def test_edit_requires_edit_capable_adapter(self, fake_adapters, storage):
        fake_adapters[Provider.OPENAI].editable = False
        service = GenerationService(None, fake_adapters, storage)
        with pytest.raises(EditNotSupportedError):
            service.validate("gpt-image", "1:1", editing=True)


class TestGenerate:

    @pytest.mark.asyncio
    async def test_exact_balance_then_insufficient(self, test_db, fake_adapters, storage):
        """Balance 3 buys one 3-credit image, then the next request is refused without a call."""
        async with test_db() as session:
            await seed_balance(session, "u1", 3)
            service = GenerationService(session, fake_adapters, storage)

            outcome = await service.generate("u1", "a lighthouse at dusk", "ideogram-3", "16:9")

            assert outcome.remaining_balance == 0
            assert outcome.credits_charged == 3
            assert outcome.mime_type == "image/png"
            assert outcome.public_url.startswith("/media/images/u1/")
            assert outcome.public_url.endswith(".png")
            assert await artifact_count(session, "u1") == 1

            replicate = fake_adapters[Provider.REPLICATE]
            assert len(replicate.calls) == 1

            with pytest.raises(InsufficientCreditsError) as exc_info:
                await service.generate("u1", "another one", "ideogram-3", "16:9")

            assert exc_info.value.kind == "insufficient-credits"
            assert exc_info.value.balance == 0
            assert exc_info.value.required == 3
            assert exc_info.value.context["credits"] == 0
            assert len(replicate.calls) == 1
            assert await artifact_count(session, "u1") == 1

    @pytest.mark.asyncio
    async def test_artifact_record(self, test_db, fake_adapters, storage):
        fake_adapters[Provider.REPLICATE].image_bytes = PNG

        async with test_db() as session:
            await seed_balance(session, "u1", 10)
            service = GenerationService(session, fake_adapters, storage)

            outcome = await service.generate("u1", "  a fox  ", "flux-schnell", "4:3")

            artifact = await session.get(Artifact, outcome.artifact_id)
            assert artifact.prompt == "a fox"
            assert artifact.model_id == "flux-schnell"
            assert artifact.aspect_ratio == "4:3"
            assert artifact.credits_charged == 1
            assert artifact.tags == []
            assert artifact.storage_path == f"images/u1/{artifact.file_name}"
            assert (storage.root / artifact.storage_path).read_bytes() == PNG

    @pytest.mark.asyncio
    async def test_stored_extension_follows_bytes(self, test_db, fake_adapters, storage):
        """The adapter claims webp; the bytes are JPEG."""
        adapter = fake_adapters[Provider.REPLICATE]
        adapter.image_bytes = JPEG
        adapter.mime_type = "image/webp"

        async with test_db() as session:
            await seed_balance(session, "u1", 10)
            outcome = await GenerationService(session, fake_adapters, storage).generate(
                "u1", "x", "flux-schnell", "1:1"
            )

            assert outcome.mime_type == "image/jpeg"
            artifact = await session.get(Artifact, outcome.artifact_id)
            assert artifact.file_name.endswith(".jpg")

    @pytest.mark.asyncio
    async def test_first_request_creates_account(self, test_db, fake_adapters, storage):
        async with test_db() as session:
            service = GenerationService(session, fake_adapters, storage)
            outcome = await service.generate("newbie", "x", "nano-banana", "1:1", email="n@example.com")
            assert outcome.remaining_balance == 9

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        UpstreamRejectedInputError("blocked", provider="replicate"),
        UpstreamUnavailableError("down", provider="replicate"),
        UpstreamBadResponseError("garbage", provider="replicate"),
    ])
    async def test_upstream_failure_charges_nothing(self, test_db, fake_adapters, storage, error):
        fake_adapters[Provider.REPLICATE].error = error

        async with test_db() as session:
            await seed_balance(session, "u1", 3)
            service = GenerationService(session, fake_adapters, storage)

            with pytest.raises(type(error)):
                await service.generate("u1", "x", "ideogram-3", "1:1")

            assert await LedgerService(session).get_balance("u1") == 3
            assert await artifact_count(session, "u1") == 0
            assert stored_files(storage) == []

    @pytest.mark.asyncio
    async def test_unsupported_ratio_mutates_nothing(self, test_db, fake_adapters, storage):
        async with test_db() as session:
            await seed_balance(session, "u1", 3)
            service = GenerationService(session, fake_adapters, storage)

            with pytest.raises(UnsupportedRatioError):
                await service.generate("u1", "x", "flux-schnell", "21:9")

            assert await LedgerService(session).get_balance("u1") == 3
            assert fake_adapters[Provider.REPLICATE].calls == []

    @pytest.mark.asyncio
    async def test_validation_before_account_creation(self, test_db, fake_adapters, storage):
        async with test_db() as session:
            service = GenerationService(session, fake_adapters, storage)
            with pytest.raises(UnknownModelError):
                await service.generate("ghost", "x", "nope", "1:1")
            assert await LedgerService(session).get_account("ghost") is None

    @pytest.mark.asyncio
    async def test_blank_prompt(self, test_db, fake_adapters, storage):
        async with test_db() as session:
            with pytest.raises(ValidationError):
                await GenerationService(session, fake_adapters, storage).generate("u1", "   ", "flux-schnell", "1:1")

    @pytest.mark.asyncio
    async def test_timeout_is_upstream_unavailable(self, test_db, fake_adapters, storage):
        fake_adapters[Provider.GOOGLE].delay = 1.0

        async with test_db() as session:
            await seed_balance(session, "u1", 5)
            service = GenerationService(session, fake_adapters, storage, timeout=0.05)

            with pytest.raises(UpstreamUnavailableError):
                await service.generate("u1", "x", "nano-banana", "1:1")

            assert await LedgerService(session).get_balance("u1") == 5

    @pytest.mark.asyncio
    async def test_empty_image_is_bad_response(self, test_db, fake_adapters, storage):
        fake_adapters[Provider.OPENAI].image_bytes = b""

        async with test_db() as session:
            await seed_balance(session, "u1", 5)
            with pytest.raises(UpstreamBadResponseError):
                await GenerationService(session, fake_adapters, storage).generate("u1", "x", "gpt-image", "1:1")
            assert await LedgerService(session).get_balance("u1") == 5

    @pytest.mark.asyncio
    async def test_record_failure_discards_bytes(self, test_db, fake_adapters, storage, monkeypatch):
        async with test_db() as session:
            await seed_balance(session, "u1", 5)
            service = GenerationService(session, fake_adapters, storage)

            async def broken_create(**kwargs):
                raise OperationalError("INSERT INTO artifacts", {}, Exception("disk I/O error"))

            monkeypatch.setattr(service.artifacts, "create", broken_create)

            with pytest.raises(StorageError) as exc_info:
                await service.generate("u1", "x", "flux-schnell", "1:1")

            assert exc_info.value.kind == "storage-error"
            assert await LedgerService(session).get_balance("u1") == 5
            assert stored_files(storage) == []

    @pytest.mark.asyncio
    async def test_storage_put_failure(self, test_db, fake_adapters, storage, monkeypatch):
        async def broken_put(path, data, content_type):
            raise StorageError("bucket unavailable")

        monkeypatch.setattr(storage, "put", broken_put)

        async with test_db() as session:
            await seed_balance(session, "u1", 5)
            with pytest.raises(StorageError):
                await GenerationService(session, fake_adapters, storage).generate("u1", "x", "flux-schnell", "1:1")

            assert await LedgerService(session).get_balance("u1") == 5
            assert await artifact_count(session, "u1") == 0


class TestEdit:

    @pytest.mark.asyncio
    async def test_edit_links_source(self, test_db, fake_adapters, storage):
        async with test_db() as session:
            await seed_balance(session, "u1", 10)
            service = GenerationService(session, fake_adapters, storage)
            source = await service.generate("u1", "a cabin", "nano-banana", "1:1")

            outcome = await service.edit(
                "u1",
                "add snow",
                "nano-banana",
                "1:1",
                source_image="https://example.com/cabin.png",
                strength=0.4,
                source_artifact_id=source.artifact_id,
            )

            artifact = await session.get(Artifact, outcome.artifact_id)
            assert artifact.edited_from_id == source.artifact_id
            assert artifact.tags == ["edited"]
            assert artifact.file_name.startswith("edit_")
            assert outcome.remaining_balance == 8

            call = fake_adapters[Provider.GOOGLE].calls[-1]
            assert call["op"] == "edit"
            assert call["strength"] == 0.4
            assert call["source_image"] == "https://example.com/cabin.png"

    @pytest.mark.asyncio
    async def test_foreign_source_artifact_rejected(self, test_db, fake_adapters, storage):
        async with test_db() as session:
            await seed_balance(session, "owner", 10)
            await seed_balance(session, "other", 10)
            service = GenerationService(session, fake_adapters, storage)
            source = await service.generate("owner", "a cabin", "nano-banana", "1:1")

            with pytest.raises(ValidationError):
                await service.edit(
                    "other", "steal", "nano-banana", "1:1",
                    source_image="https://example.com/cabin.png",
                    source_artifact_id=source.artifact_id,
                )
            assert await LedgerService(session).get_balance("other") == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source,strength", [
        ("ftp://example.com/a.png", 0.5),
        ("", 0.5),
        ("https://example.com/a.png", 1.5),
    ])
    async def test_bad_edit_input(self, test_db, fake_adapters, storage, source, strength):
        async with test_db() as session:
            service = GenerationService(session, fake_adapters, storage)
            with pytest.raises(ValidationError):
                await service.edit("u1", "x", "nano-banana", "1:1", source_image=source, strength=strength)
            assert fake_adapters[Provider.GOOGLE].calls == []

    @pytest.mark.asyncio
    async def test_edit_not_supported(self, test_db, fake_adapters, storage):
        fake_adapters[Provider.OPENAI].editable = False

        async with test_db() as session:
            await seed_balance(session, "u1", 10)
            with pytest.raises(EditNotSupportedError):
                await GenerationService(session, fake_adapters, storage).edit(
                    "u1", "x", "gpt-image", "1:1", source_image="https://example.com/a.png"
                )
            assert await LedgerService(session).get_balance("u1") == 10
