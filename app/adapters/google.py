"""
Google Generative Language adapter.

Two protocols live behind one provider:
- Gemini image models (`generateContent`) are conversational and can answer
  with text instead of an image. A response with no image part is a failure;
  any text returned is kept in the diagnostics.
- Imagen models (`:predict`) return base64 predictions.

The API key travels as a `key` query parameter.
"""
import base64
import logging
from typing import Optional

from app.adapters.base import (
    GenerationResult,
    ImageAdapter,
    decode_base64_image,
    parse_json,
    raise_for_upstream_status,
    translate_transport_errors,
)
from app.errors import UpstreamBadResponseError, UpstreamRejectedInputError
from app.providers.formats import resolve_format
from app.providers.models import ModelCapability, Provider, dimensions_for

logger = logging.getLogger(__name__)

# finishReason values meaning the model refused rather than malfunctioned
BLOCKED_FINISH_REASONS = ("SAFETY", "PROHIBITED_CONTENT", "IMAGE_SAFETY", "BLOCKLIST", "SPII", "RECITATION")


def _inline_data(part: dict) -> Optional[dict]:
    return part.get("inlineData") or part.get("inline_data")


def _is_imagen(capability: ModelCapability) -> bool:
    return capability.provider_model_id.startswith("imagen-")


class GoogleAdapter(ImageAdapter):
    provider = Provider.GOOGLE

    def _auth_headers(self) -> dict:
        return {"Content-Type": "application/json"}

    def can_edit(self, capability: ModelCapability) -> bool:
        return not _is_imagen(capability)

    async def generate(self, prompt: str, capability: ModelCapability, ratio: str) -> GenerationResult:
        self._ensure_configured()
        logger.info(
            f"Generating with {capability.name}",
            extra={"provider": self.name, "model": capability.provider_model_id, "ratio": ratio},
        )
        if _is_imagen(capability):
            return await self._generate_imagen(prompt, capability, ratio)
        parts = [{"text": f"Generate an image: {prompt}"}]
        return await self._generate_content(parts, capability, ratio)

    async def edit(
        self,
        prompt: str,
        capability: ModelCapability,
        ratio: str,
        source_image: str,
        strength: float,
    ) -> GenerationResult:
        self._ensure_configured()
        source_bytes, declared = await self.load_source_image(source_image)
        source_format = resolve_format(source_bytes, declared)

        logger.info(
            f"Editing with {capability.name}",
            extra={"provider": self.name, "model": capability.provider_model_id, "ratio": ratio},
        )
        parts = [
            {
                "inlineData": {
                    "mimeType": source_format.mime_type,
                    "data": base64.b64encode(source_bytes).decode("ascii"),
                }
            },
            {"text": prompt},
        ]
        return await self._generate_content(parts, capability, ratio)

    def _image_config(self, capability: ModelCapability, ratio: str) -> dict:
        image_config = {}
        aspect_ratio = dimensions_for(capability, ratio)
        if aspect_ratio != "1:1":
            image_config["aspectRatio"] = aspect_ratio
        if "imageSize" in capability.default_params:
            image_config["imageSize"] = capability.default_params["imageSize"]
        return image_config

    async def _generate_content(self, parts: list, capability: ModelCapability, ratio: str) -> GenerationResult:
        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }
        image_config = self._image_config(capability, ratio)
        if image_config:
            body["generationConfig"]["imageConfig"] = image_config

        async with self._client() as client:
            async with translate_transport_errors(self.name):
                response = await client.post(
                    f"/v1beta/models/{capability.provider_model_id}:generateContent",
                    params={"key": self.api_key},
                    json=body,
                )
        raise_for_upstream_status(response, self.name)
        data = parse_json(response, self.name)

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise UpstreamRejectedInputError(
                    f"Gemini blocked the prompt: {block_reason}",
                    provider=self.name,
                    context={"block_reason": block_reason},
                )
            raise UpstreamBadResponseError("No candidates returned from Gemini API", provider=self.name)

        candidate = candidates[0]
        response_parts = (candidate.get("content") or {}).get("parts") or []
        text = "\n".join(p["text"] for p in response_parts if isinstance(p.get("text"), str)).strip()
        diagnostics = {
            "finish_reason": candidate.get("finishReason"),
            "usage": data.get("usageMetadata"),
            "model_version": data.get("modelVersion"),
        }
        if text:
            diagnostics["text"] = text

        for part in response_parts:
            inline = _inline_data(part)
            if not inline:
                continue
            mime_type = inline.get("mimeType") or inline.get("mime_type") or ""
            if mime_type.startswith("image/") and inline.get("data"):
                image_bytes = decode_base64_image(inline["data"], self.name)
                return GenerationResult.from_bytes(image_bytes, mime_type, diagnostics=diagnostics)

        finish_reason = candidate.get("finishReason")
        context = {"finish_reason": finish_reason}
        if text:
            context["text"] = text[:500]

        logger.warning(
            "Gemini returned no image",
            extra={"provider": self.name, "model": capability.provider_model_id, "finish_reason": finish_reason},
        )
        if finish_reason in BLOCKED_FINISH_REASONS:
            raise UpstreamRejectedInputError(
                f"Gemini declined to generate an image ({finish_reason})",
                provider=self.name,
                context=context,
            )
        raise UpstreamBadResponseError(
            "No image data returned from Gemini API",
            provider=self.name,
            context=context,
        )

    async def _generate_imagen(self, prompt: str, capability: ModelCapability, ratio: str) -> GenerationResult:
        body = {
            "instances": [{"prompt": prompt}],
            "parameters": {"sampleCount": 1},
        }
        aspect_ratio = dimensions_for(capability, ratio)
        if aspect_ratio != "1:1":
            body["parameters"]["aspectRatio"] = aspect_ratio

        async with self._client() as client:
            async with translate_transport_errors(self.name):
                response = await client.post(
                    f"/v1beta/models/{capability.provider_model_id}:predict",
                    params={"key": self.api_key},
                    json=body,
                )
        raise_for_upstream_status(response, self.name)
        data = parse_json(response, self.name)

        predictions = data.get("predictions") or []
        if not predictions:
            raise UpstreamBadResponseError("No predictions returned from Imagen API", provider=self.name)

        image_data = predictions[0].get("bytesBase64Encoded")
        if not image_data:
            raise UpstreamBadResponseError("No image data returned from Imagen API", provider=self.name)

        image_bytes = decode_base64_image(image_data, self.name)
        return GenerationResult.from_bytes(
            image_bytes,
            predictions[0].get("mimeType") or "image/png",
        )
