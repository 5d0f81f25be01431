import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles

from app.adapters import build_adapters
from app.config import settings
from app.database import init_db
from app.errors import ServiceError, make_error_response, service_error_response
from app.routers import account, admin_api, billing, generation
from app.services.payment_processor import StripeProcessor
from app.services.storage import LocalByteStorage

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

Path(settings.STORAGE_DIR).mkdir(parents=True, exist_ok=True)


def configure_state(app: FastAPI) -> None:
    """Build process-wide collaborators once. Anything already set (tests) is kept."""
    if not hasattr(app.state, "adapters"):
        app.state.adapters = build_adapters(settings)
    if not hasattr(app.state, "storage"):
        app.state.storage = LocalByteStorage(settings.STORAGE_DIR, settings.PUBLIC_MEDIA_URL)
    if not hasattr(app.state, "payment_processor"):
        app.state.payment_processor = StripeProcessor(
            settings.STRIPE_SECRET_KEY,
            settings.STRIPE_WEBHOOK_SECRET,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and provider adapters on startup."""
    await init_db()
    configure_state(app)

    configured = [p.value for p, a in app.state.adapters.items() if getattr(a, "api_key", None)]
    logger.info("Image providers configured", extra={"providers": configured})
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set; all webhooks will be rejected")

    yield


app = FastAPI(
    title="PromptForge",
    description="Credit-metered image generation across Replicate, OpenAI and Google",
    version="0.1.0",
    lifespan=lifespan,
)

# Generated images
app.mount(settings.PUBLIC_MEDIA_URL, StaticFiles(directory=settings.STORAGE_DIR), name="media")

# Include routers
app.include_router(generation.router, tags=["generation"])
app.include_router(account.router, tags=["account"])
app.include_router(billing.router, tags=["billing"])
app.include_router(admin_api.router)


@app.get("/health")
async def health_check(request: Request):
    """Liveness plus which providers have credentials."""
    adapters = getattr(request.app.state, "adapters", {})
    return {
        "status": "healthy",
        "service": "promptforge",
        "version": "0.1.0",
        "checks": {
            "providers": {p.value: bool(getattr(a, "api_key", None)) for p, a in adapters.items()},
            "stripe": bool(settings.STRIPE_SECRET_KEY and settings.STRIPE_WEBHOOK_SECRET),
        },
    }


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render dispatch and billing failures as structured error envelopes."""
    if exc.status_code >= 500:
        logger.error(
            f"{exc.kind}: {exc.message}",
            extra={"path": request.url.path, "provider": exc.provider},
        )
    return service_error_response(exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last-resort handler: log the traceback, return a generic envelope."""
    logger.exception(
        f"Unhandled error on {request.method} {request.url.path}",
        extra={"error_type": type(exc).__name__},
    )
    return make_error_response(
        500,
        "internal-error",
        "An unexpected error occurred. Please try again.",
        recovery={"action": "contact_support"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.DEFAULT_HOST, port=settings.DEFAULT_PORT)
