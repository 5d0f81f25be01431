"""Tests for the generation, edit and image endpoints."""
import pytest
from sqlalchemy import func, select

from app.errors import UpstreamRejectedInputError
from app.models import Account, Artifact
from app.providers.models import Provider


async def seed_balance(test_db, user_id="u1", credits=3):
    async with test_db() as session:
        session.add(Account(id=user_id, email=f"{user_id}@example.com", credits=credits))
        await session.commit()


class TestGenerateEndpoint:

    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        response = await client.post("/api/generate", json={"prompt": "x", "model": "flux-schnell"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_bad_token(self, client):
        response = await client.post(
            "/api/generate",
            json={"prompt": "x", "model": "flux-schnell"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_generate_then_insufficient(self, client, test_db, auth_headers, fake_adapters):
        """Balance 3, two 3-credit requests: one image, then a 402 reporting balance 0."""
        await seed_balance(test_db, credits=3)

        response = await client.post(
            "/api/generate",
            json={"prompt": "a lighthouse", "model": "gpt-image-hd", "aspect_ratio": "16:9"},
            headers=auth_headers(),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["remaining_balance"] == 0
        assert data["credits_charged"] == 3
        assert data["model"] == "gpt-image-hd"
        assert data["image_url"].startswith("/media/images/u1/")

        response = await client.post(
            "/api/generate",
            json={"prompt": "again", "model": "gpt-image-hd", "aspect_ratio": "16:9"},
            headers=auth_headers(),
        )
        assert response.status_code == 402
        error = response.json()["error"]
        assert error["type"] == "insufficient-credits"
        assert error["context"]["credits"] == 0
        assert error["context"]["required_credits"] == 3
        assert error["recovery"]["action"] == "choose_cheaper_model"
        assert len(fake_adapters[Provider.OPENAI].calls) == 1

    @pytest.mark.asyncio
    async def test_unsupported_ratio(self, client, test_db, auth_headers):
        await seed_balance(test_db, credits=3)

        response = await client.post(
            "/api/generate",
            json={"prompt": "x", "model": "flux-schnell", "aspect_ratio": "21:9"},
            headers=auth_headers(),
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["type"] == "validation-error"
        assert error["category"] == "permanent"
        assert "supported_ratios" in error["context"]

    @pytest.mark.asyncio
    async def test_unknown_model(self, client, auth_headers):
        response = await client.post(
            "/api/generate",
            json={"prompt": "x", "model": "midjourney"},
            headers=auth_headers(),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_upstream_failure(self, client, test_db, auth_headers, fake_adapters):
        await seed_balance(test_db, credits=3)
        fake_adapters[Provider.REPLICATE].error = UpstreamRejectedInputError(
            "Replicate prediction failed: NSFW content detected", provider="replicate"
        )

        response = await client.post(
            "/api/generate",
            json={"prompt": "x", "model": "flux-schnell"},
            headers=auth_headers(),
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["type"] == "upstream-rejected-input"
        assert error["provider"] == "replicate"

        async with test_db() as session:
            assert await session.scalar(select(Account.credits).where(Account.id == "u1")) == 3
            assert await session.scalar(select(func.count(Artifact.id))) == 0

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected_by_schema(self, client, auth_headers):
        response = await client.post(
            "/api/generate",
            json={"prompt": "", "model": "flux-schnell"},
            headers=auth_headers(),
        )
        assert response.status_code == 422


class TestEditEndpoint:

    @pytest.mark.asyncio
    async def test_edit(self, client, test_db, auth_headers, fake_adapters):
        await seed_balance(test_db, credits=5)

        response = await client.post(
            "/api/edit",
            json={
                "prompt": "make it night",
                "model": "nano-banana",
                "image_url": "https://example.com/day.png",
                "strength": 0.3,
            },
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json()["remaining_balance"] == 4
        assert fake_adapters[Provider.GOOGLE].calls[0]["strength"] == 0.3

    @pytest.mark.asyncio
    async def test_strength_out_of_range(self, client, auth_headers):
        response = await client.post(
            "/api/edit",
            json={"prompt": "x", "model": "nano-banana", "image_url": "https://example.com/a.png", "strength": 2},
            headers=auth_headers(),
        )
        assert response.status_code == 422


class TestImagesEndpoint:

    @pytest.mark.asyncio
    async def test_delete_own_image(self, client, test_db, auth_headers, storage):
        await seed_balance(test_db, credits=3)
        created = await client.post(
            "/api/generate",
            json={"prompt": "x", "model": "flux-schnell"},
            headers=auth_headers(),
        )
        image_id = created.json()["image_id"]

        response = await client.delete(f"/api/images/{image_id}", headers=auth_headers())

        assert response.status_code == 200
        assert response.json()["deleted"] is True
        async with test_db() as session:
            assert await session.get(Artifact, image_id) is None

    @pytest.mark.asyncio
    async def test_delete_someone_elses_image(self, client, test_db, auth_headers):
        await seed_balance(test_db, credits=3)
        created = await client.post(
            "/api/generate",
            json={"prompt": "x", "model": "flux-schnell"},
            headers=auth_headers(),
        )
        image_id = created.json()["image_id"]

        response = await client.delete(f"/api/images/{image_id}", headers=auth_headers("u2", "u2@example.com"))

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "not-found"


class TestModelsEndpoint:

    @pytest.mark.asyncio
    async def test_lists_active_models(self, client):
        response = await client.get("/api/models")

        assert response.status_code == 200
        data = response.json()
        ids = {m["id"] for m in data["models"]}
        assert "flux-schnell" in ids
        assert "flux-dev" not in ids
        assert "1:1" in data["aspect_ratios"]
