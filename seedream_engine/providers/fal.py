"""fal.ai Seedream edit provider."""

from __future__ import annotations

import asyncio
import math
from typing import Any, Awaitable, Callable

import httpx

from ..config import Settings
from ..errors import ProviderConfigError, ProviderUnavailableError
from ..jobs.poller import JobHandle, JobPoller
from ..utils import sanitize_payload
from .base import GenerationRequest, ProviderResult


QUEUE_BASE_URL = "https://queue.fal.run"
MAX_FAL_REFERENCES = 10
MAX_FAL_IMAGES = 15
FAL_MIN_DIMENSION = 1024
FAL_MAX_DIMENSION = 4096
FAL_SIZE_PRESETS = {
    "1K": 1024,
    "2K": 2048,
    "4K": 4096,
}
FAL_ASPECT_RATIOS = {
    "1:1": (1, 1),
    "4:3": (4, 3),
    "3:4": (3, 4),
    "16:9": (16, 9),
    "9:16": (9, 16),
    "3:2": (3, 2),
    "2:3": (2, 3),
    "21:9": (21, 9),
}
FAL_STATUS_ALIASES = {
    "IN_QUEUE": "starting",
    "IN_PROGRESS": "processing",
    "COMPLETED": "succeeded",
    "FAILED": "failed",
    "ERROR": "failed",
    "error": "failed",
}


class FalJobPoller(JobPoller):
    """Queue poller whose results live behind a separate ``response_url``."""

    async def _terminal_output(self, handle: JobHandle) -> Any:
        if not handle.result_url:
            return handle.last_payload
        try:
            response = await self._client.get(handle.result_url)
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                f"fal.ai result fetch failed: {exc}", job_id=handle.job_id, provider=self.provider
            ) from exc
        if response.is_error:
            raise ProviderUnavailableError(
                f"fal.ai result error ({response.status_code}): {response.text}",
                job_id=handle.job_id,
                status_code=response.status_code,
                provider=self.provider,
            )
        return response.json()


class FalProvider:
    name = "fal"
    status_label = "fal.ai generation completed"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._transport = transport
        self._sleep = sleep

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        token = self.settings.fal_key
        if not token:
            raise ProviderConfigError("FAIAI_API_TOKEN (or FAL_KEY) is not configured.")
        model = self.settings.fal_model.strip("/")
        fal_input = build_fal_input(request)

        async with httpx.AsyncClient(
            headers={"Authorization": f"Key {token}", "Content-Type": "application/json"},
            timeout=self.settings.request_timeout_s,
            transport=self._transport,
        ) as client:
            poller = FalJobPoller(
                client,
                provider=self.name,
                poll_interval=self.settings.poll_interval_s,
                poll_timeout=self.settings.poll_timeout_s,
                status_aliases=FAL_STATUS_ALIASES,
                sleep=self._sleep,
            )
            output = await poller.submit_and_await(f"{QUEUE_BASE_URL}/{model}", fal_input)

        warnings: list[str] = []
        if not output:
            warnings.append("fal.ai returned no images.")
        return ProviderResult(
            output=output,
            model=model,
            provider_request=sanitize_payload(fal_input),
            warnings=warnings,
        )


def build_fal_input(request: GenerationRequest) -> dict[str, Any]:
    references = list(request.references)[-MAX_FAL_REFERENCES:]
    reference_count = len(references)

    requested_images = 1
    if request.sequential_image_generation == "auto" and request.max_images and request.max_images > 1:
        requested_images = min(request.max_images, MAX_FAL_IMAGES)
    max_generated = max(1, MAX_FAL_IMAGES - min(reference_count, MAX_FAL_IMAGES))
    allowed_images = min(requested_images, max_generated)

    payload: dict[str, Any] = {
        "prompt": request.prompt,
        "enable_safety_checker": not request.disable_safety_filter,
        "num_images": allowed_images,
    }
    if request.negative_prompt:
        payload["negative_prompt"] = request.negative_prompt
    if allowed_images > 1:
        payload["max_images"] = allowed_images
    if references:
        payload["image_urls"] = [reference.data_uri for reference in references]
    image_size = compute_fal_image_size(request.size, request.aspect_ratio, request.width, request.height)
    if image_size:
        payload["image_size"] = image_size
    if request.seed is not None:
        payload["seed"] = request.seed
    if request.sync_mode:
        payload["sync_mode"] = True
    return payload


def compute_fal_image_size(
    size: str | None,
    aspect_ratio: str | None,
    width: int | None,
    height: int | None,
) -> dict[str, int] | None:
    if size and size.lower() == "custom":
        if width and height:
            return {"width": _clamp_dimension(width), "height": _clamp_dimension(height)}
        return None

    base = FAL_SIZE_PRESETS.get((size or "").upper())
    if not base:
        return None

    ratio = FAL_ASPECT_RATIOS.get(aspect_ratio or "")
    if not ratio:
        dimension = _clamp_dimension(base)
        return {"width": dimension, "height": dimension}

    ratio_width, ratio_height = ratio
    smallest = min(ratio_width, ratio_height)
    out_width = _round_half_up(base * ratio_width / smallest)
    out_height = _round_half_up(base * ratio_height / smallest)
    out_width, out_height = _scale_into_max(out_width, out_height)

    current_min = min(out_width, out_height)
    if current_min < FAL_MIN_DIMENSION:
        scale_up = FAL_MIN_DIMENSION / current_min
        out_width = _round_half_up(out_width * scale_up)
        out_height = _round_half_up(out_height * scale_up)
        out_width, out_height = _scale_into_max(out_width, out_height)

    return {"width": _clamp_dimension(out_width), "height": _clamp_dimension(out_height)}


def _scale_into_max(width: int, height: int) -> tuple[int, int]:
    scale_down = max(width / FAL_MAX_DIMENSION, height / FAL_MAX_DIMENSION, 1.0)
    if scale_down > 1:
        return _round_half_up(width / scale_down), _round_half_up(height / scale_down)
    return width, height


def _clamp_dimension(value: float) -> int:
    return min(max(_round_half_up(value), FAL_MIN_DIMENSION), FAL_MAX_DIMENSION)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
