import os
from dotenv import load_dotenv

load_dotenv()


def _require_env(key: str) -> str:
    """Get required environment variable or raise error."""
    value = os.getenv(key)
    if not value:
        raise ValueError(f"{key} environment variable is required")
    return value


class Settings:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
    DATABASE_URL: str = _require_env("DATABASE_URL")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRATION_HOURS: int = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Server settings
    DEFAULT_PORT: int = int(os.getenv("PORT", "8767"))
    DEFAULT_HOST: str = os.getenv("HOST", "127.0.0.1")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:3001")

    # Master API key for admin operations (subscription repair on behalf of a user)
    MASTER_API_KEY: str = os.getenv("MASTER_API_KEY", "")

    # Provider credentials
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    REPLICATE_API_TOKEN: str = os.getenv("REPLICATE_API_TOKEN", "")
    GOOGLE_AI_API_KEY: str = os.getenv("GOOGLE_AI_API_KEY", "")

    # Provider base URLs
    PROVIDER_URLS = {
        "openai": "https://api.openai.com",
        "replicate": "https://api.replicate.com",
        "google": "https://generativelanguage.googleapis.com",
    }

    # Per-request HTTP timeouts (seconds)
    PROVIDER_TIMEOUTS = {
        "openai": 180.0,  # gpt-image high quality can take minutes
        "replicate": 60.0,
        "google": 120.0,
    }

    # Replicate predictions are polled until they reach a terminal state
    REPLICATE_POLL_INTERVAL: float = float(os.getenv("REPLICATE_POLL_INTERVAL", "1.0"))
    REPLICATE_MAX_WAIT: float = float(os.getenv("REPLICATE_MAX_WAIT", "300"))

    # Upper bound on one adapter call as seen by the dispatcher
    GENERATION_TIMEOUT: float = float(os.getenv("GENERATION_TIMEOUT", "360"))

    # Byte storage for generated images
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "media")
    PUBLIC_MEDIA_URL: str = os.getenv("PUBLIC_MEDIA_URL", "/media")

    # Stripe
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    # Credits
    NEW_ACCOUNT_CREDITS: int = int(os.getenv("NEW_ACCOUNT_CREDITS", "10"))
    SUBSCRIPTION_MONTHLY_CREDITS: int = int(os.getenv("SUBSCRIPTION_MONTHLY_CREDITS", "400"))
    SUBSCRIPTION_PRICE: float = float(os.getenv("SUBSCRIPTION_PRICE", "10.00"))


settings = Settings()
