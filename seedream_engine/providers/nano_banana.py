"""Gemini "Nano Banana" provider."""

from __future__ import annotations

import base64
from typing import Any, Callable, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..config import Settings
from ..errors import ProviderConfigError, ProviderError, ProviderRejectedError
from ..prompting.compose import reference_guidance
from .base import GenerationRequest, ProviderResult


MAX_NANO_BANANA_REFERENCES = 4


class NanoBananaProvider:
    name = "nano-banana"
    status_label = "Nano Banana generation completed"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._client_factory = client_factory or (lambda api_key: genai.Client(api_key=api_key))

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        if not self.settings.gemini_enabled:
            raise ProviderConfigError("Nano Banana provider is disabled.")
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise ProviderConfigError("GEMINI_API_KEY is not configured.")

        model = self.settings.nano_banana_model
        client = self._client_factory(api_key)
        parts = build_nano_banana_parts(request)
        config = types.GenerateContentConfig(
            temperature=0.4,
            response_modalities=["IMAGE", "TEXT"],
        )
        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=[types.Content(role="user", parts=parts)],
                config=config,
            )
        except genai_errors.APIError as exc:
            raise ProviderRejectedError(
                f"Nano Banana (Gemini) error ({exc.code}): {exc.message}",
                status_code=exc.code,
                body=str(exc.details) if exc.details else None,
                provider=self.name,
            ) from exc

        images, texts = extract_nano_banana_outputs(getattr(response, "candidates", None) or [])
        output = images or [_text_data_uri(text) for text in texts]
        if not output:
            raise ProviderError("Nano Banana returned no content", provider=self.name)
        return ProviderResult(
            output=output,
            model=model,
            provider_request={
                "model": model,
                "references": min(len(request.references), MAX_NANO_BANANA_REFERENCES),
                "prompt": request.prompt,
            },
        )


def build_nano_banana_parts(request: GenerationRequest) -> list[types.Part]:
    parts: list[types.Part] = []
    for index, reference in enumerate(list(request.references)[:MAX_NANO_BANANA_REFERENCES], start=1):
        parts.append(
            types.Part(
                inline_data=types.Blob(
                    data=reference.asset.data,
                    mime_type=reference.asset.content_type or "image/png",
                )
            )
        )
        if reference.instruction:
            name = reference.original_name or f"image-{index}"
            parts.append(types.Part(text=f"Reference {index} ({name}): {reference.instruction}"))
    parts.append(types.Part(text=build_nano_banana_brief(request)))
    return parts


def build_nano_banana_brief(request: GenerationRequest) -> str:
    segments = [f"PRIMARY_PROMPT:\n{request.prompt}"]
    if request.negative_prompt:
        segments.append(f"NEGATIVE_PROMPT:\n{request.negative_prompt}")
    guidance = reference_guidance(request.references, label="Reference")
    if guidance:
        segments.append("REFERENCE_GUIDANCE:\n" + "\n".join(guidance))
    size = (request.size or "").strip()
    if size:
        if size.lower() == "custom" and request.width and request.height:
            segments.append(f"TARGET_RESOLUTION: {request.width}x{request.height}")
        else:
            segments.append(f"TARGET_RESOLUTION: {size}")
    if request.aspect_ratio.strip():
        segments.append(f"TARGET_ASPECT_RATIO: {request.aspect_ratio}")
    if request.sequential_image_generation and request.sequential_image_generation != "disabled":
        segments.append(f"SEQUENTIAL_MODE: {request.sequential_image_generation}")
    if request.max_images and request.max_images > 1:
        segments.append(f"REQUESTED_IMAGE_COUNT: {request.max_images}")
    return "\n\n".join(segments)


def extract_nano_banana_outputs(candidates: Sequence[Any]) -> tuple[list[str], list[str]]:
    images: list[str] = []
    texts: list[str] = []
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) or []
        for part in parts:
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None) if inline_data else None
            if data:
                if isinstance(data, str):
                    encoded = data
                else:
                    encoded = base64.b64encode(bytes(data)).decode("ascii")
                mime_type = getattr(inline_data, "mime_type", None) or "image/png"
                images.append(f"data:{mime_type};base64,{encoded}")
                continue
            text = getattr(part, "text", None)
            if text:
                texts.append(text)
    return images, texts


def _text_data_uri(text: str) -> str:
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return f"data:text/plain;base64,{encoded}"
