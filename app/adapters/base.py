"""
Common contract for image provider adapters.

Each adapter turns one provider's protocol into `generate`/`edit` calls that
return a GenerationResult holding raw bytes. Provider failures never leak as
httpx exceptions; they are translated into the upstream-* error kinds:

- 401/403                  -> UpstreamAuthError
- 400/404/413/422          -> UpstreamRejectedInputError
- 429/5xx, timeouts, DNS   -> UpstreamUnavailableError
- anything else unexpected -> UpstreamBadResponseError
"""
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional, Tuple

import httpx

from app.errors import (
    EditNotSupportedError,
    UpstreamAuthError,
    UpstreamBadResponseError,
    UpstreamRejectedInputError,
    UpstreamUnavailableError,
)
from app.providers.formats import decode_data_url, is_data_url, resolve_format
from app.providers.models import ModelCapability, Provider

logger = logging.getLogger(__name__)

REJECTED_INPUT_STATUSES = (400, 404, 413, 422)

# Cap on how much of an upstream error body is kept for diagnostics
MAX_ERROR_DETAIL = 500


@dataclass
class GenerationResult:
    """Image bytes plus format derived from the bytes themselves."""
    image_bytes: bytes
    mime_type: str
    extension: str
    diagnostics: dict = field(default_factory=dict)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        declared_content_type: Optional[str] = None,
        diagnostics: Optional[dict] = None,
    ) -> "GenerationResult":
        fmt = resolve_format(data, declared_content_type)
        return cls(
            image_bytes=data,
            mime_type=fmt.mime_type,
            extension=fmt.extension,
            diagnostics=diagnostics or {},
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:MAX_ERROR_DETAIL]
    if isinstance(body, dict):
        error = body.get("error") or body.get("detail") or body
        if isinstance(error, dict):
            error = error.get("message") or error
        return str(error)[:MAX_ERROR_DETAIL]
    return str(body)[:MAX_ERROR_DETAIL]


def raise_for_upstream_status(response: httpx.Response, provider: str) -> None:
    """Translate a non-2xx provider response into an upstream error."""
    if response.is_success:
        return

    status = response.status_code
    detail = _error_detail(response)
    context = {"status_code": status}
    message = f"{provider} returned HTTP {status}: {detail}"

    logger.warning(
        f"Upstream error from {provider}",
        extra={"provider": provider, "status_code": status, "detail": detail},
    )

    if status in (401, 403):
        raise UpstreamAuthError(message, provider=provider, context=context)
    if status in REJECTED_INPUT_STATUSES:
        raise UpstreamRejectedInputError(message, provider=provider, context=context)
    if status == 429 or status >= 500:
        raise UpstreamUnavailableError(message, provider=provider, context=context)
    raise UpstreamBadResponseError(message, provider=provider, context=context)


@asynccontextmanager
async def translate_transport_errors(provider: str):
    """Turn httpx transport failures (timeouts, refused connections) into upstream-unavailable."""
    try:
        yield
    except httpx.TimeoutException as e:
        logger.error(f"Provider timeout: {provider}", extra={"provider": provider, "error": str(e)})
        raise UpstreamUnavailableError(
            f"{provider} request timed out. The provider may be experiencing high load.",
            provider=provider,
        ) from e
    except httpx.TransportError as e:
        logger.error(f"Provider connection error: {provider}", extra={"provider": provider, "error": str(e)})
        raise UpstreamUnavailableError(
            f"Cannot connect to {provider}. The provider may be down or unreachable.",
            provider=provider,
        ) from e


def parse_json(response: httpx.Response, provider: str) -> dict:
    try:
        body = response.json()
    except ValueError as e:
        raise UpstreamBadResponseError(f"{provider} returned a non-JSON body", provider=provider) from e
    if not isinstance(body, dict):
        raise UpstreamBadResponseError(f"{provider} returned an unexpected JSON shape", provider=provider)
    return body


def decode_base64_image(payload: str, provider: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise UpstreamBadResponseError(f"{provider} returned invalid base64 image data", provider=provider) from e


class ImageAdapter(ABC):
    """
    Base class for provider adapters.

    Adapters are built once at start-up (see app.adapters.build_adapters)
    and shared across requests. Each call opens its own httpx client so no
    connection state outlives a request.
    """

    provider: Provider

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def name(self) -> str:
        return self.provider.value

    @abstractmethod
    async def generate(self, prompt: str, capability: ModelCapability, ratio: str) -> GenerationResult:
        """Create an image from a prompt."""

    async def edit(
        self,
        prompt: str,
        capability: ModelCapability,
        ratio: str,
        source_image: str,
        strength: float,
    ) -> GenerationResult:
        """Transform an existing image. `source_image` is an https:// or data: URL."""
        raise EditNotSupportedError(
            f"{capability.name} does not support image editing",
            provider=self.name,
        )

    def can_edit(self, capability: ModelCapability) -> bool:
        return False

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _client(self, headers: Optional[dict] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers if headers is not None else self._auth_headers(),
            transport=self.transport,
        )

    def _ensure_configured(self) -> None:
        if not self.api_key:
            raise UpstreamAuthError(
                f"No credentials configured for {self.name}",
                provider=self.name,
            )

    async def download_image(self, url: str) -> Tuple[bytes, Optional[str]]:
        """
        Fetch an image from a provider delivery URL.

        Uses a client without provider credentials since delivery hosts are
        usually a different origin. Returns (bytes, declared content type).
        """
        if is_data_url(url):
            try:
                return decode_data_url(url)
            except ValueError as e:
                raise UpstreamBadResponseError(str(e), provider=self.name) from e

        async with translate_transport_errors(self.name):
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)

        if not response.is_success:
            # The job itself succeeded, so a broken delivery link is a bad response
            if response.status_code == 429 or response.status_code >= 500:
                raise_for_upstream_status(response, self.name)
            raise UpstreamBadResponseError(
                f"Failed to download image from {self.name} (HTTP {response.status_code})",
                provider=self.name,
                context={"status_code": response.status_code},
            )
        return response.content, response.headers.get("content-type")

    async def load_source_image(self, source_image: str) -> Tuple[bytes, Optional[str]]:
        """Resolve an edit source (data: or https:// URL) into bytes."""
        if is_data_url(source_image):
            try:
                return decode_data_url(source_image)
            except ValueError as e:
                raise UpstreamRejectedInputError(str(e), provider=self.name) from e
        return await self.download_image(source_image)
