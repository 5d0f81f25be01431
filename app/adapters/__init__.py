"""
Provider adapters.

`build_adapters` is the only place adapters are constructed. The result is a
mapping keyed by Provider covering every member of the enum, so the
dispatcher can look an adapter up without a fallback branch.
"""
from typing import Optional

import httpx

from app.adapters.base import GenerationResult, ImageAdapter
from app.adapters.google import GoogleAdapter
from app.adapters.openai import OpenAIAdapter
from app.adapters.replicate import ReplicateAdapter
from app.providers.models import Provider


def build_adapters(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> dict[Provider, ImageAdapter]:
    """Create one adapter per provider from application settings."""
    adapters: dict[Provider, ImageAdapter] = {
        Provider.OPENAI: OpenAIAdapter(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.PROVIDER_URLS["openai"],
            timeout=settings.PROVIDER_TIMEOUTS["openai"],
            transport=transport,
        ),
        Provider.REPLICATE: ReplicateAdapter(
            api_key=settings.REPLICATE_API_TOKEN,
            base_url=settings.PROVIDER_URLS["replicate"],
            timeout=settings.PROVIDER_TIMEOUTS["replicate"],
            transport=transport,
            poll_interval=settings.REPLICATE_POLL_INTERVAL,
            max_wait=settings.REPLICATE_MAX_WAIT,
        ),
        Provider.GOOGLE: GoogleAdapter(
            api_key=settings.GOOGLE_AI_API_KEY,
            base_url=settings.PROVIDER_URLS["google"],
            timeout=settings.PROVIDER_TIMEOUTS["google"],
            transport=transport,
        ),
    }
    missing = set(Provider) - set(adapters)
    if missing:
        raise RuntimeError(f"No adapter registered for: {', '.join(sorted(p.value for p in missing))}")
    return adapters


__all__ = [
    "GenerationResult",
    "GoogleAdapter",
    "ImageAdapter",
    "OpenAIAdapter",
    "ReplicateAdapter",
    "build_adapters",
]
