"""Prompt enhancement through the xAI Grok chat completions API."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import httpx

from ..config import Settings
from ..errors import (
    ProviderConfigError,
    ProviderError,
    ProviderRejectedError,
    ProviderUnavailableError,
    RequestValidationError,
)


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert prompt engineer for generative imagery. Expand the provided base prompt "
    "into a polished production-ready prompt. Always respond in compact JSON with keys "
    "enhancedPrompt and negativePrompt."
)
SUGGESTION_SYSTEM_PROMPT = (
    "You are an advanced prompt engineering copilot. Given a template with ${placeholders}, "
    "propose production-ready values. Return JSON with 'values' and 'preview'. 'values' is an "
    "object where each placeholder key has 'value', 'explanation', and optional 'alternatives' "
    "(array). 'preview' is the template with placeholders replaced by the proposed values. "
    "Be concise but descriptive."
)
BLUEPRINT_SYSTEM_PROMPT = (
    "You are a senior cinematic prompt designer for Seedream-4. Given a user prompt, craft three "
    "complete prompt blueprints using the exact advanced formula (intent, subject, action, camera, "
    "lighting, environment, texture, composition, negative). Each blueprint must be realistic and "
    "production-ready. Respond strictly with JSON containing a 'recommended' object and an "
    "'alternatives' array (length 2). Each blueprint object must include name, tagline, fields "
    "(with keys intent, subject, action, camera, lighting, environment, texture, composition), "
    "negative, and optional accent color (hex)."
)
BLUEPRINT_TASKS = (
    "Tasks:\n"
    "1. Recommended blueprint should enhance the user prompt while keeping intent and identity cohesive.\n"
    "2. Provide two additional random but polished blueprints that vary camera angles, scenery, "
    "wardrobe, lighting, but still produce believable human photography.\n"
    "3. Use concise sentence fragments for each field.\n"
    "4. Ensure negatives target failure modes (plastic skin, warped anatomy, etc.)."
)

# Guidance handed to the model for each card of the advanced prompt builder.
ADVANCED_CARD_HINTS = {
    "intent": "Focus on the cinematic intent, theme, or emotional beat. Provide concise story framing.",
    "subject": "Describe identity, styling, wardrobe textures, and any hero props that ground reality.",
    "action": "Specify the main action plus a micro-action, along with gaze direction and pose cues.",
    "camera": "Lock the camera reality: vantage height, framing, focal length, aperture, lens type, tilt.",
    "lighting": "Define key/fill/rim lights, color temperatures, and how light interacts with the scene.",
    "environment": "Paint the location materials, atmosphere, weather, and background silhouettes.",
    "texture": "Mention tactile textures, bloom/flare, grain, and overall color grading style.",
    "composition": "State composition constraints such as headroom, leading lines, reflections, or isolation.",
    "negative": "List precise negative tokens targeting failure modes you want to avoid.",
}
DEFAULT_CARD_HINT = "Provide realistic, production-quality values."

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")


@dataclass(frozen=True)
class EnhancedPrompt:
    prompt: str
    negative_prompt: str


@dataclass(frozen=True)
class AdvancedSuggestion:
    card_key: str
    template: str
    placeholders: list[str]
    values: dict[str, Any] = field(default_factory=dict)
    preview: str = ""


@dataclass(frozen=True)
class BlueprintSet:
    recommended: Any
    alternatives: list[Any] = field(default_factory=list)


class PromptEnhancer:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._transport = transport

    async def enhance(
        self,
        prompt: str,
        negative_prompt: str = "",
        instructions: Sequence[Mapping[str, Any]] = (),
    ) -> EnhancedPrompt:
        base_prompt = (prompt or "").strip()
        negative = (negative_prompt or "").strip()
        if not base_prompt:
            raise RequestValidationError("Prompt is required")

        content = await self._chat(
            SYSTEM_PROMPT,
            build_user_message(base_prompt, negative, instructions),
            temperature=0.4,
            max_tokens=700,
        )
        return parse_enhancement(content, base_prompt, negative)

    async def suggest(
        self,
        card_key: str,
        template: str,
        fields: Mapping[str, Any] | None = None,
    ) -> AdvancedSuggestion:
        """Ask Grok for values for every ``${placeholder}`` in an advanced-builder card.

        Templates without placeholders come back unchanged and never reach the API.
        """
        card_key = (card_key or "").strip().lower()
        if not card_key or not template:
            raise RequestValidationError("cardKey and template are required")
        placeholders = extract_placeholders(template)
        if not placeholders:
            return AdvancedSuggestion(card_key, template, [], {}, template)

        hint = ADVANCED_CARD_HINTS.get(card_key, DEFAULT_CARD_HINT)
        message = (
            f"Card: {card_key}\n"
            f"Guidance: {hint}\n"
            f"Template: {template}\n"
            f"Placeholders: {', '.join(placeholders)}\n"
            f"Existing Context:\n{_context_lines(fields)}"
        )
        content = await self._chat(SUGGESTION_SYSTEM_PROMPT, message, temperature=0.4, max_tokens=700)
        parsed = _load_json_object(content, "suggestions")
        values = parsed.get("values")
        preview = parsed.get("preview")
        return AdvancedSuggestion(
            card_key=card_key,
            template=template,
            placeholders=placeholders,
            values=values if isinstance(values, dict) else {},
            preview=preview if isinstance(preview, str) else template,
        )

    async def blueprints(self, prompt: str = "", fields: Mapping[str, Any] | None = None) -> BlueprintSet:
        message = (
            f"User prompt (seedream-4 style): {(prompt or '').strip() or '(none provided)'}\n"
            f"Existing context:\n{_context_lines(fields)}\n"
            f"{BLUEPRINT_TASKS}"
        )
        content = await self._chat(BLUEPRINT_SYSTEM_PROMPT, message, temperature=0.5, max_tokens=900)
        parsed = _load_json_object(content, "blueprints")
        alternatives = parsed.get("alternatives")
        return BlueprintSet(
            recommended=parsed.get("recommended"),
            alternatives=alternatives if isinstance(alternatives, list) else [],
        )

    async def _chat(self, system_prompt: str, user_message: str, *, temperature: float, max_tokens: int) -> str:
        api_key = self.settings.grok_api_key
        if not api_key:
            raise ProviderConfigError("XAI_API_KEY is not configured.")

        body = {
            "model": self.settings.grok_model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        async with httpx.AsyncClient(
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=self.settings.grok_timeout_s,
            transport=self._transport,
        ) as client:
            try:
                response = await client.post(self.settings.grok_api_url, json=body)
            except httpx.TimeoutException as exc:
                raise ProviderUnavailableError(
                    f"Grok API timed out after {self.settings.grok_timeout_s:.0f}s", provider="grok"
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderUnavailableError(f"Grok API request failed: {exc}", provider="grok") from exc

        if response.is_error:
            raise ProviderRejectedError(
                f"Grok API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
                provider="grok",
            )
        return _message_content(response.json())


def extract_placeholders(template: str) -> list[str]:
    """Return the distinct ``${name}`` placeholders of ``template`` in first-seen order."""
    return list(dict.fromkeys(_PLACEHOLDER_RE.findall(template or "")))


def build_user_message(prompt: str, negative_prompt: str, instructions: Sequence[Mapping[str, Any]]) -> str:
    if instructions:
        guidance = "\n".join(
            f"Reference {index} ({entry.get('originalName') or 'reference'}): "
            f"{entry.get('instruction') or 'no additional guidance'}"
            for index, entry in enumerate(instructions, start=1)
        )
    else:
        guidance = "none provided"
    return (
        f"BASE_PROMPT:\n{prompt}\n\n"
        f"NEGATIVE_PROMPT:\n{negative_prompt or '(none)'}\n\n"
        f"REFERENCE_GUIDANCE:\n{guidance}"
    )


def parse_enhancement(content: str, prompt: str, negative_prompt: str) -> EnhancedPrompt:
    """Read ``enhancedPrompt``/``negativePrompt`` from a model reply, keeping inputs on failure."""
    enhanced = prompt
    negative = negative_prompt
    json_text = _json_block(content)
    if not json_text:
        return EnhancedPrompt(enhanced, negative)
    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError:
        logger.warning("Unable to parse Grok enhancement JSON")
        return EnhancedPrompt(enhanced, negative)
    if isinstance(parsed, dict):
        candidate = parsed.get("enhancedPrompt")
        if isinstance(candidate, str) and candidate.strip():
            enhanced = candidate.strip()
        candidate_negative = parsed.get("negativePrompt")
        if isinstance(candidate_negative, str):
            negative = candidate_negative.strip()
    return EnhancedPrompt(enhanced, negative)


def _json_block(content: str) -> str:
    text = (content or "").strip()
    match = _FENCED_JSON_RE.search(text)
    return match.group(1).strip() if match else text


def _load_json_object(content: str, kind: str) -> dict[str, Any]:
    json_text = _json_block(content)
    if not json_text:
        raise ProviderError("Grok response missing JSON body", provider="grok")
    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as exc:
        raise ProviderError(f"Invalid JSON response for {kind}", provider="grok") from exc
    if not isinstance(parsed, dict):
        raise ProviderError(f"Invalid JSON response for {kind}", provider="grok")
    return parsed


def _context_lines(fields: Mapping[str, Any] | None) -> str:
    lines = [f"{key}: {value}" for key, value in (fields or {}).items()]
    return "\n".join(lines) or "(none)"


def _message_content(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content.strip() if isinstance(content, str) else ""
