"""
Replicate adapter.

Replicate runs predictions asynchronously: a prediction is created, then
polled until it reaches a terminal state. Output is a delivery URL (or a
list of them) which is downloaded into memory.
"""
import asyncio
import logging
import math
from typing import Optional

import httpx

from app.adapters.base import (
    GenerationResult,
    ImageAdapter,
    parse_json,
    raise_for_upstream_status,
    translate_transport_errors,
)
from app.errors import UpstreamBadResponseError, UpstreamRejectedInputError, UpstreamUnavailableError
from app.providers.dimensions import Dimensions
from app.providers.models import ModelCapability, Provider, dimensions_for

logger = logging.getLogger(__name__)

TERMINAL_STATES = ("succeeded", "failed", "canceled")

DEFAULT_EDIT_STRENGTH = 0.8


class ReplicateAdapter(ImageAdapter):
    provider = Provider.REPLICATE

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        poll_interval: float = 1.0,
        max_wait: float = 300.0,
    ):
        super().__init__(api_key, base_url, timeout, transport)
        self.poll_interval = poll_interval
        self.max_wait = max_wait

    def can_edit(self, capability: ModelCapability) -> bool:
        return True

    def _build_input(self, prompt: str, capability: ModelCapability, ratio: str) -> dict:
        model_input = {"prompt": prompt, **capability.default_params}
        dims = dimensions_for(capability, ratio)
        if isinstance(dims, Dimensions):
            model_input["width"] = dims.width
            model_input["height"] = dims.height
        else:
            model_input["aspect_ratio"] = dims
        return model_input

    async def generate(self, prompt: str, capability: ModelCapability, ratio: str) -> GenerationResult:
        model_input = self._build_input(prompt, capability, ratio)
        logger.info(
            f"Generating with {capability.name}",
            extra={"provider": self.name, "model": capability.provider_model_id, "ratio": ratio},
        )
        return await self._run(capability, model_input)

    async def edit(
        self,
        prompt: str,
        capability: ModelCapability,
        ratio: str,
        source_image: str,
        strength: float = DEFAULT_EDIT_STRENGTH,
    ) -> GenerationResult:
        model_input = self._build_input(prompt, capability, ratio)

        # FLUX Kontext takes input_image; img2img models take image + prompt_strength
        if "flux-kontext" in capability.provider_model_id:
            model_input["input_image"] = source_image
        else:
            model_input["image"] = source_image
            model_input["prompt_strength"] = strength

        logger.info(
            f"Editing with {capability.name}",
            extra={"provider": self.name, "model": capability.provider_model_id, "ratio": ratio},
        )
        return await self._run(capability, model_input)

    async def _run(self, capability: ModelCapability, model_input: dict) -> GenerationResult:
        self._ensure_configured()

        async with self._client() as client:
            prediction = await self._create_prediction(client, capability.provider_model_id, model_input)
            prediction = await self._wait(client, prediction)

        output_url = self._extract_output_url(prediction)
        data, declared = await self.download_image(output_url)
        return GenerationResult.from_bytes(
            data,
            declared,
            diagnostics={
                "prediction_id": prediction.get("id"),
                "metrics": prediction.get("metrics"),
                "output_url": output_url,
            },
        )

    async def _create_prediction(self, client: httpx.AsyncClient, model_id: str, model_input: dict) -> dict:
        # "owner/name:version" pins a version; "owner/name" runs the latest official model
        if ":" in model_id:
            path = "/v1/predictions"
            payload = {"version": model_id.split(":", 1)[1], "input": model_input}
        else:
            path = f"/v1/models/{model_id}/predictions"
            payload = {"input": model_input}

        async with translate_transport_errors(self.name):
            response = await client.post(path, json=payload)
        raise_for_upstream_status(response, self.name)

        prediction = parse_json(response, self.name)
        if not prediction.get("id"):
            raise UpstreamBadResponseError("Replicate did not return a prediction id", provider=self.name)
        return prediction

    async def _wait(self, client: httpx.AsyncClient, prediction: dict) -> dict:
        """Poll a prediction until it is terminal, giving up after max_wait seconds."""
        prediction_id = prediction["id"]
        if self.poll_interval > 0:
            max_attempts = max(1, math.ceil(self.max_wait / self.poll_interval))
        else:
            max_attempts = max(1, int(self.max_wait))
        attempts = 0

        while prediction.get("status") not in TERMINAL_STATES:
            if attempts >= max_attempts:
                logger.error(
                    "Replicate prediction did not finish in time",
                    extra={"provider": self.name, "prediction_id": prediction_id, "max_wait": self.max_wait},
                )
                raise UpstreamUnavailableError(
                    f"Replicate prediction {prediction_id} did not finish within {int(self.max_wait)}s",
                    provider=self.name,
                    context={"prediction_id": prediction_id},
                )
            attempts += 1
            await asyncio.sleep(self.poll_interval)

            async with translate_transport_errors(self.name):
                response = await client.get(f"/v1/predictions/{prediction_id}")
            raise_for_upstream_status(response, self.name)
            prediction = parse_json(response, self.name)

        status = prediction["status"]
        if status == "failed":
            error = prediction.get("error") or "unknown error"
            logger.warning(
                "Replicate prediction failed",
                extra={"provider": self.name, "prediction_id": prediction_id, "error": str(error)},
            )
            raise UpstreamRejectedInputError(
                f"Replicate prediction failed: {error}",
                provider=self.name,
                context={"prediction_id": prediction_id, "error": error, "logs": prediction.get("logs")},
            )
        if status == "canceled":
            raise UpstreamUnavailableError(
                f"Replicate prediction {prediction_id} was canceled",
                provider=self.name,
                context={"prediction_id": prediction_id},
            )
        return prediction

    def _extract_output_url(self, prediction: dict) -> str:
        output = prediction.get("output")
        if isinstance(output, list) and output and isinstance(output[0], str):
            return output[0]
        if isinstance(output, str) and output:
            return output
        raise UpstreamBadResponseError(
            f"Invalid output format from Replicate: {str(output)[:200]}",
            provider=self.name,
            context={"prediction_id": prediction.get("id")},
        )
