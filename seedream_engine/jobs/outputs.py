"""Flatten heterogeneous provider output payloads into URL lists."""

from __future__ import annotations

from typing import Any, Mapping


def flatten_output_urls(output: Any) -> list[str]:
    """Collect URL strings from a provider ``output`` value.

    Accepts bare strings, lists of anything, and mappings carrying one of
    ``images[]``, ``output[]``, ``url``, ``image_url`` or ``image.url``
    (checked in that order).
    Entries that resolve to nothing are dropped.
    """
    if not output:
        return []
    if isinstance(output, str):
        text = output.strip()
        return [text] if text else []
    if isinstance(output, (list, tuple)):
        urls: list[str] = []
        for entry in output:
            urls.extend(flatten_output_urls(entry))
        return urls
    if isinstance(output, Mapping):
        return _flatten_mapping(output)
    return []


def _flatten_mapping(output: Mapping[str, Any]) -> list[str]:
    # Nested lists win over direct URL keys.
    for key in ("images", "output"):
        value = output.get(key)
        if isinstance(value, (list, tuple)):
            return flatten_output_urls(value)
    for key in ("url", "image_url"):
        value = output.get(key)
        if isinstance(value, str) and value.strip():
            return [value.strip()]
    image = output.get("image")
    if isinstance(image, Mapping):
        nested = image.get("url")
        if isinstance(nested, str) and nested.strip():
            return [nested.strip()]
    return []
