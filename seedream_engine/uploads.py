"""Parsing of uploaded reference files and their per-image instructions."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .providers.base import GenerationRequest
from .utils import parse_bool, parse_int


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Upload:
    file_name: str
    data: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class UploadInstruction:
    image_id: str
    original_name: str
    instruction: str


def parse_instructions(raw: Any) -> list[dict[str, Any]]:
    """Decode the ``instructions`` form field.

    The field is either one JSON array or a list of JSON objects (one per
    repeated form value). Unparseable payloads yield an empty list.
    """
    if not raw:
        return []
    if isinstance(raw, Mapping):
        return [dict(raw)]
    try:
        if isinstance(raw, (list, tuple)):
            entries = [json.loads(entry) if isinstance(entry, str) else entry for entry in raw]
        else:
            entries = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Unable to parse instruction payload")
        return []
    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, dict)]


def split_upload_name(file_name: str) -> tuple[str, str]:
    """Split ``<id>__<original name>`` upload names; other names map to themselves."""
    name = file_name or f"upload-{uuid.uuid4()}"
    if "__" in name:
        image_id, original_name = name.split("__", 1)
        return image_id, original_name
    return name, name


def resolve_upload_instruction(upload: Upload, instructions: Sequence[Mapping[str, Any]]) -> UploadInstruction:
    image_id, original_name = split_upload_name(upload.file_name)
    entry = next((item for item in instructions if item.get("id") == image_id), None)
    note = ""
    if entry is not None:
        note = str(entry.get("instruction") or "").strip()
        original_name = str(entry.get("originalName") or original_name)
    return UploadInstruction(image_id=image_id, original_name=original_name, instruction=note)


def _form_text(fields: Mapping[str, Any], key: str) -> str:
    value = fields.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return str(value).strip() if value is not None else ""


def request_from_form(fields: Mapping[str, Any]) -> GenerationRequest:
    """Build a ``GenerationRequest`` from the generate form fields as the web client names them."""
    provider = _form_text(fields, "provider").lower() or "replicate"
    return GenerationRequest(
        prompt=_form_text(fields, "prompt"),
        provider=provider,
        negative_prompt=_form_text(fields, "negativePrompt"),
        size=_form_text(fields, "size"),
        aspect_ratio=_form_text(fields, "aspect_ratio"),
        width=parse_int(fields.get("width")),
        height=parse_int(fields.get("height")),
        sequential_image_generation=_form_text(fields, "sequential_image_generation"),
        max_images=parse_int(fields.get("max_images")),
        disable_safety_filter=parse_bool(fields.get("disableSafetyFilter")),
        seed=parse_int(fields.get("fal_seed")),
        sync_mode=parse_bool(fields.get("fal_sync_mode")),
    )
