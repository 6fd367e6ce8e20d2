"""Replicate (Seedream-4) provider."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable

import httpx

from ..config import Settings
from ..errors import ProviderConfigError, ProviderRejectedError, RequestValidationError
from ..jobs.poller import JobPoller
from ..models.version_cache import ModelVersionCache
from ..utils import sanitize_payload
from .base import GenerationRequest, ProviderResult


logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.replicate.com/v1"
CUSTOM_DIMENSION_RANGE = (1024, 4096)
MAX_SEQUENTIAL_IMAGES = 15
DEMO_ASPECT_RATIO = "match_input_image"
_VERSION_ID_RE = re.compile(r"^[0-9a-f]{64}$")


class ReplicateProvider:
    name = "replicate"
    status_label = "Seedream generation completed"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        version_cache: ModelVersionCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.version_cache = version_cache if version_cache is not None else ModelVersionCache()
        self._transport = transport
        self._sleep = sleep

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        return await self._run(build_replicate_input(request))

    async def run_prompt(self, prompt: str, aspect_ratio: str = DEMO_ASPECT_RATIO) -> ProviderResult:
        """Run a bare text prompt against the Seedream model, without references."""
        prompt = (prompt or "").strip()
        if not prompt:
            raise RequestValidationError("Prompt is required")
        return await self._run({"prompt": prompt, "aspect_ratio": aspect_ratio or DEMO_ASPECT_RATIO})

    async def _run(self, replicate_input: dict[str, Any]) -> ProviderResult:
        token = self.settings.replicate_api_token
        if not token:
            raise ProviderConfigError("REPLICATE_API_TOKEN is not configured.")

        async with self._client(token) as client:
            version = await self.version_cache.resolve(
                self.settings.replicate_model,
                lambda source: resolve_model_version(client, source),
            )
            poller = JobPoller(
                client,
                provider=self.name,
                poll_interval=self.settings.poll_interval_s,
                poll_timeout=self.settings.poll_timeout_s,
                status_url_template=f"{API_BASE_URL}/predictions/{{id}}",
                sleep=self._sleep,
            )
            output = await poller.submit_and_await(
                f"{API_BASE_URL}/predictions",
                {"version": version, "input": replicate_input},
            )

        return ProviderResult(
            output=output,
            model=version,
            provider_request=sanitize_payload({"version": version, "input": replicate_input}),
        )

    def _client(self, token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Token {token}",
                "Content-Type": "application/json",
            },
            timeout=self.settings.request_timeout_s,
            transport=self._transport,
        )


def build_replicate_input(request: GenerationRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": request.prompt,
        "image_input": [reference.data_uri for reference in request.references],
    }
    if request.negative_prompt:
        payload["negative_prompt"] = request.negative_prompt
    if request.size:
        payload["size"] = request.size
        if request.size.lower() == "custom":
            low, high = CUSTOM_DIMENSION_RANGE
            if request.width and low <= request.width <= high:
                payload["width"] = request.width
            if request.height and low <= request.height <= high:
                payload["height"] = request.height
    if request.aspect_ratio:
        payload["aspect_ratio"] = request.aspect_ratio
    if request.sequential_image_generation:
        payload["sequential_image_generation"] = request.sequential_image_generation
        if (
            request.sequential_image_generation == "auto"
            and request.max_images
            and 1 <= request.max_images <= MAX_SEQUENTIAL_IMAGES
        ):
            payload["max_images"] = request.max_images
    if request.disable_safety_filter:
        payload["enable_safety_checker"] = False
    return payload


async def resolve_model_version(client: httpx.AsyncClient, source: str) -> str:
    """Turn a model slug or pinned identifier into a Replicate version id."""
    source = source.strip()
    if ":" in source:
        return source.rsplit(":", 1)[1]
    if _VERSION_ID_RE.match(source):
        return source

    owner, _, name = source.partition("/")
    if not owner or not name or "/" in name:
        raise ProviderConfigError(f"Invalid model slug: {source}")

    model = await _get_json(client, f"{API_BASE_URL}/models/{owner}/{name}")
    latest = model.get("latest_version")
    version_id = latest.get("id") if isinstance(latest, dict) else None
    if not version_id:
        versions = await _get_json(client, f"{API_BASE_URL}/models/{owner}/{name}/versions")
        results = versions.get("results")
        if isinstance(results, list) and results and isinstance(results[0], dict):
            version_id = results[0].get("id")
    if not version_id:
        raise ProviderConfigError(f"Unable to resolve model version for {source}")
    logger.info("Resolved Replicate model %s to version %s", source, version_id)
    return str(version_id)


async def _get_json(client: httpx.AsyncClient, url: str) -> dict[str, Any]:
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        raise ProviderRejectedError(f"Replicate request failed: {exc}", provider="replicate") from exc
    if response.is_error:
        raise ProviderRejectedError(
            f"Replicate API error ({response.status_code}): {response.text}",
            status_code=response.status_code,
            body=response.text,
            provider="replicate",
        )
    payload = response.json()
    return payload if isinstance(payload, dict) else {}
