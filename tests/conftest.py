import asyncio
import hashlib
import hmac
import json
import os
import tempfile
import time

import pytest

# Configure the app BEFORE importing it; Settings reads the environment at import
_MEDIA_DIR = tempfile.mkdtemp(prefix="promptforge-media-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["MASTER_API_KEY"] = "test-master-key"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STORAGE_DIR"] = _MEDIA_DIR
os.environ["NEW_ACCOUNT_CREDITS"] = "10"

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from app.adapters.base import GenerationResult, ImageAdapter
from app.auth import create_access_token
from app.database import Base, get_db
from app.main import app
from app.providers.models import Provider
from app.services.payment_processor import StripeProcessor
from app.services.storage import LocalByteStorage

WEBHOOK_SECRET = "whsec_test_secret"
MASTER_KEY = "test-master-key"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01" + b"\x00" * 32
WEBP_BYTES = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 32


class FakeAdapter(ImageAdapter):
    """Adapter returning canned bytes (or raising) and recording every call."""

    def __init__(self, provider: Provider, image_bytes: bytes = PNG_BYTES, mime_type: str = "image/png"):
        super().__init__(api_key="test-key", base_url="http://fake.invalid", timeout=5)
        self.provider = provider
        self.image_bytes = image_bytes
        self.mime_type = mime_type
        self.error = None
        self.delay = 0.0
        self.editable = True
        self.calls = []

    def can_edit(self, capability) -> bool:
        return self.editable

    async def _respond(self) -> GenerationResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            image_bytes=self.image_bytes,
            mime_type=self.mime_type,
            extension=self.mime_type.split("/")[-1],
        )

    async def generate(self, prompt, capability, ratio):
        self.calls.append({"op": "generate", "prompt": prompt, "model": capability.id, "ratio": ratio})
        return await self._respond()

    async def edit(self, prompt, capability, ratio, source_image, strength):
        self.calls.append({
            "op": "edit",
            "prompt": prompt,
            "model": capability.id,
            "ratio": ratio,
            "source_image": source_image,
            "strength": strength,
        })
        return await self._respond()


class FakeStripeProcessor(StripeProcessor):
    """Real webhook signature checks; Stripe API calls answered from memory."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        super().__init__(secret_key="sk_test_fake", webhook_secret=webhook_secret)
        self.customers = {}
        self.subscriptions = {}
        self.canceled = []
        self.checkout_sessions = []
        self.portal_sessions = []

    async def find_customer_id(self, email):
        return self.customers.get(email)

    async def list_active_subscriptions(self, customer_id):
        return [s for s in self.subscriptions.get(customer_id, []) if s["status"] == "active"]

    async def cancel_at_period_end(self, subscription_id):
        self.canceled.append(subscription_id)
        for subs in self.subscriptions.values():
            for sub in subs:
                if sub["id"] == subscription_id:
                    sub["cancel_at_period_end"] = True
                    return {**sub, "cancel_at": sub.get("current_period_end")}
        return {"id": subscription_id, "status": "active", "cancel_at_period_end": True}

    async def create_checkout_session(self, params):
        session_id = f"cs_test_{len(self.checkout_sessions) + 1}"
        self.checkout_sessions.append(params)
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    async def create_portal_session(self, customer_id, return_url):
        self.portal_sessions.append((customer_id, return_url))
        return f"https://billing.stripe.test/{customer_id}"


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for a payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
async def test_db(tmp_path):
    """Create a fresh test database for each test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield async_session

    app.dependency_overrides.clear()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def fake_adapters():
    """One FakeAdapter per provider."""
    return {provider: FakeAdapter(provider) for provider in Provider}


@pytest.fixture
def storage(tmp_path):
    return LocalByteStorage(str(tmp_path / "media"), "/media")


@pytest.fixture
def payment_processor():
    return FakeStripeProcessor()


@pytest.fixture
def sign_webhook():
    """Serialize an event (or take a raw body) and return (body, headers) signed with the test secret."""
    def _sign(event, secret: str = WEBHOOK_SECRET):
        body = event if isinstance(event, str) else json.dumps(event)
        return body, {"stripe-signature": sign_payload(body, secret), "content-type": "application/json"}
    return _sign


@pytest.fixture
def auth_headers():
    """Bearer headers for a user id (and optional email)."""
    def _headers(user_id: str = "u1", email: str = "u1@example.com") -> dict:
        token = create_access_token({"sub": user_id, "email": email})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def master_headers():
    return {"Authorization": f"Bearer {MASTER_KEY}"}


@pytest.fixture
async def client(test_db, fake_adapters, storage, payment_processor):
    """Create an async test client with fakes installed on app.state."""
    app.state.adapters = fake_adapters
    app.state.storage = storage
    app.state.payment_processor = payment_processor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
