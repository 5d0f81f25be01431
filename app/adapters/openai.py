"""
OpenAI Images adapter (DALL-E 3 and the GPT Image family).

Both model families are synchronous. DALL-E 3 answers with a hosted URL by
default; GPT Image models always answer with inline base64. Either way the
result is normalized into bytes.
"""
import logging

from app.adapters.base import (
    GenerationResult,
    ImageAdapter,
    decode_base64_image,
    parse_json,
    raise_for_upstream_status,
    translate_transport_errors,
)
from app.errors import UpstreamBadResponseError
from app.providers.formats import resolve_format
from app.providers.models import ModelCapability, Provider, dimensions_for

logger = logging.getLogger(__name__)

# Only the GPT Image family has an edits endpoint that accepts our sizes
NON_EDITABLE_MODELS = ("dall-e-3",)


class OpenAIAdapter(ImageAdapter):
    provider = Provider.OPENAI

    def can_edit(self, capability: ModelCapability) -> bool:
        return capability.provider_model_id not in NON_EDITABLE_MODELS

    def _build_payload(self, prompt: str, capability: ModelCapability, ratio: str) -> dict:
        payload = {
            "model": capability.provider_model_id,
            "prompt": prompt,
            "n": 1,
            "size": dimensions_for(capability, ratio),
        }
        if capability.provider_model_id == "dall-e-3":
            payload["quality"] = "standard"
        payload.update(capability.default_params)
        return payload

    async def generate(self, prompt: str, capability: ModelCapability, ratio: str) -> GenerationResult:
        self._ensure_configured()
        payload = self._build_payload(prompt, capability, ratio)

        logger.info(
            f"Generating with {capability.name}",
            extra={"provider": self.name, "model": capability.provider_model_id, "size": payload["size"]},
        )

        async with self._client() as client:
            async with translate_transport_errors(self.name):
                response = await client.post("/v1/images/generations", json=payload)
        raise_for_upstream_status(response, self.name)

        return await self._parse_images_response(parse_json(response, self.name))

    async def edit(
        self,
        prompt: str,
        capability: ModelCapability,
        ratio: str,
        source_image: str,
        strength: float,
    ) -> GenerationResult:
        # The edits endpoint has no strength parameter; the prompt alone steers the change
        self._ensure_configured()
        source_bytes, declared = await self.load_source_image(source_image)
        source_format = resolve_format(source_bytes, declared)

        payload = self._build_payload(prompt, capability, ratio)
        form = {key: str(value) for key, value in payload.items()}

        logger.info(
            f"Editing with {capability.name}",
            extra={"provider": self.name, "model": capability.provider_model_id, "size": payload["size"]},
        )

        async with self._client() as client:
            async with translate_transport_errors(self.name):
                response = await client.post(
                    "/v1/images/edits",
                    data=form,
                    files={"image": (f"source.{source_format.extension}", source_bytes, source_format.mime_type)},
                )
        raise_for_upstream_status(response, self.name)

        return await self._parse_images_response(parse_json(response, self.name))

    async def _parse_images_response(self, body: dict) -> GenerationResult:
        data = body.get("data") or []
        if not data or not isinstance(data[0], dict):
            raise UpstreamBadResponseError("No image returned from OpenAI", provider=self.name)

        item = data[0]
        diagnostics = {
            "created": body.get("created"),
            "revised_prompt": item.get("revised_prompt"),
            "usage": body.get("usage"),
        }

        if item.get("b64_json"):
            image_bytes = decode_base64_image(item["b64_json"], self.name)
            declared = f"image/{body['output_format']}" if body.get("output_format") else None
            return GenerationResult.from_bytes(image_bytes, declared, diagnostics=diagnostics)

        if item.get("url"):
            image_bytes, declared = await self.download_image(item["url"])
            diagnostics["url"] = item["url"]
            return GenerationResult.from_bytes(image_bytes, declared, diagnostics=diagnostics)

        raise UpstreamBadResponseError("OpenAI response had neither b64_json nor url", provider=self.name)
