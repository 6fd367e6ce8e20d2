"""Request orchestration: normalize references, compose prompts, dispatch providers."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

import httpx

from .config import MAX_REMOTE_IMPORT_SOURCE_BYTES, MAX_UPLOAD_SOURCE_BYTES, Settings
from .errors import ProviderConfigError, RequestValidationError, SeedreamError, SourceTooLargeError
from .imaging.normalize import ImageNormalizer, NormalizationResult, NormalizerConfig
from .models.version_cache import ModelVersionCache
from .prompting.compose import compose_final_prompt
from .prompting.enhance import AdvancedSuggestion, BlueprintSet, EnhancedPrompt, PromptEnhancer
from .providers import default_registry
from .providers.base import GenerationRequest, ProviderRegistry, ReferenceImage
from .providers.replicate import DEMO_ASPECT_RATIO
from .runs.events import EventWriter
from .uploads import Upload, parse_instructions, resolve_upload_instruction


logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("replicate", "fal", "nano-banana")
REFERENCE_REQUIREMENTS = {
    "replicate": "At least one reference image is required",
    "fal": "fal.ai Seedream edit requires at least one reference image",
}


@dataclass(frozen=True)
class GenerationResult:
    status: str
    output: list[str]
    prompt: str
    model: str
    provider: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class DemoResult:
    status: str
    output: list[str]
    prompt: str
    aspect_ratio: str
    model: str


@dataclass(frozen=True)
class ImportedImage:
    file_name: str
    content_type: str
    data_uri: str
    width: int
    height: int


class GenerationService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider_registry: ProviderRegistry | None = None,
        normalizer: ImageNormalizer | None = None,
        enhancer: PromptEnhancer | None = None,
        events_path: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.version_cache = ModelVersionCache()
        self.providers = provider_registry or default_registry(self.settings, self.version_cache)
        self.normalizer = normalizer or ImageNormalizer(
            NormalizerConfig(max_dimension=self.settings.max_image_dimension)
        )
        self.enhancer = enhancer or PromptEnhancer(self.settings)
        self.events = EventWriter(events_path) if events_path else None
        self._transport = transport

    async def normalize(self, data: bytes, content_type: str | None = None) -> NormalizationResult:
        # Pillow work is CPU bound; keep it off the event loop.
        return await asyncio.to_thread(self.normalizer.normalize, data, content_type)

    async def prepare_references(
        self,
        uploads: Sequence[Upload],
        instructions: Any = None,
    ) -> list[ReferenceImage]:
        entries = parse_instructions(instructions)
        references: list[ReferenceImage] = []
        for upload in uploads:
            if len(upload.data) > MAX_UPLOAD_SOURCE_BYTES:
                raise SourceTooLargeError(
                    "Unable to process image because it exceeds the upload size limit.",
                    byte_length=len(upload.data),
                    limit=MAX_UPLOAD_SOURCE_BYTES,
                )
            info = resolve_upload_instruction(upload, entries)
            normalized = await self.normalize(upload.data, upload.content_type)
            references.append(
                ReferenceImage(
                    asset=normalized.as_asset(),
                    image_id=info.image_id,
                    original_name=info.original_name,
                    instruction=info.instruction,
                )
            )
        return references

    async def generate(
        self,
        request: GenerationRequest,
        uploads: Sequence[Upload] = (),
        instructions: Any = None,
    ) -> GenerationResult:
        request_id = uuid.uuid4().hex
        provider_name = (request.provider or "replicate").strip().lower()
        provider = self.providers.get(provider_name) if provider_name in SUPPORTED_PROVIDERS else None
        if provider is None:
            available = ", ".join(self.providers.list()) or "none"
            raise RequestValidationError(f"Unsupported provider: {provider_name} (available: {available})")
        prompt = (request.prompt or "").strip()
        if not prompt:
            raise RequestValidationError("Prompt is required")
        if provider_name in REFERENCE_REQUIREMENTS and not (request.references or uploads):
            raise RequestValidationError(REFERENCE_REQUIREMENTS[provider_name])

        started = time.monotonic()
        self._emit("generation_started", request_id, provider=provider_name, uploads=len(uploads))
        try:
            references = list(request.references)
            references.extend(await self.prepare_references(uploads, instructions))
            final_prompt = compose_final_prompt(prompt, references)
            prepared = dataclasses.replace(
                request,
                provider=provider_name,
                prompt=final_prompt,
                negative_prompt=(request.negative_prompt or "").strip(),
                references=tuple(references),
            )
            result = await provider.generate(prepared)
        except SeedreamError as exc:
            logger.warning("Generation via %s failed: %s", provider_name, exc)
            self._emit(
                "generation_failed",
                request_id,
                provider=provider_name,
                error=str(exc),
                error_type=type(exc).__name__,
                status_code=exc.status_code,
                latency_s=round(time.monotonic() - started, 3),
            )
            raise

        for warning in result.warnings:
            logger.warning("%s: %s", provider_name, warning)
        self._emit(
            "generation_completed",
            request_id,
            provider=provider_name,
            model=result.model,
            outputs=len(result.output),
            latency_s=round(time.monotonic() - started, 3),
        )
        return GenerationResult(
            status=getattr(provider, "status_label", "Generation completed"),
            output=result.output,
            prompt=final_prompt,
            model=result.model,
            provider=provider_name,
            warnings=tuple(result.warnings),
        )

    async def import_remote_image(self, url: str) -> ImportedImage:
        url = (url or "").strip()
        if not url:
            raise RequestValidationError("Image URL is required")
        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.settings.request_timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise SeedreamError("Unable to import remote image") from exc
        if response.is_error:
            raise RequestValidationError(f"Unable to fetch image (status {response.status_code})")
        content_type = response.headers.get("content-type") or "application/octet-stream"
        if not content_type.startswith("image/"):
            raise RequestValidationError("URL does not point to an image resource")
        data = response.content
        if len(data) > MAX_REMOTE_IMPORT_SOURCE_BYTES:
            raise SourceTooLargeError(
                "Remote image is too large to process",
                byte_length=len(data),
                limit=MAX_REMOTE_IMPORT_SOURCE_BYTES,
            )
        normalized = await self.normalize(data, content_type)
        return ImportedImage(
            file_name=_file_name_from_url(url),
            content_type=normalized.content_type,
            data_uri=normalized.as_data_uri(),
            width=normalized.width,
            height=normalized.height,
        )

    async def enhance_prompt(
        self,
        prompt: str,
        negative_prompt: str = "",
        instructions: Sequence[Mapping[str, Any]] = (),
    ) -> EnhancedPrompt:
        return await self.enhancer.enhance(prompt, negative_prompt, instructions)

    async def suggest(
        self,
        card_key: str,
        template: str,
        fields: Mapping[str, Any] | None = None,
    ) -> AdvancedSuggestion:
        return await self.enhancer.suggest(card_key, template, fields)

    async def blueprints(self, prompt: str = "", fields: Mapping[str, Any] | None = None) -> BlueprintSet:
        return await self.enhancer.blueprints(prompt, fields)

    async def demo_run(self, prompt: str, aspect_ratio: str = DEMO_ASPECT_RATIO) -> DemoResult:
        """Run a text-only Seedream prediction on Replicate."""
        prompt = (prompt or "").strip()
        if not prompt:
            raise RequestValidationError("Prompt is required")
        aspect_ratio = (aspect_ratio or "").strip() or DEMO_ASPECT_RATIO
        provider = self.providers.get("replicate")
        if provider is None or not hasattr(provider, "run_prompt"):
            raise ProviderConfigError("Replicate provider is not registered.")
        result = await provider.run_prompt(prompt, aspect_ratio)
        logger.info("Demo run produced %d output(s) with %s", len(result.output), result.model)
        return DemoResult(
            status="Seedream demo completed",
            output=result.output,
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            model=result.model,
        )

    def _emit(self, event_type: str, request_id: str, **payload: Any) -> None:
        if self.events is None:
            return
        self.events.emit(event_type, request_id, **payload)


def _file_name_from_url(url: str) -> str:
    raw_name = url.split("/")[-1] or "remote-image"
    return raw_name.split("?")[0] or "remote-image"
