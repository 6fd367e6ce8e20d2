"""Shared utilities for the Seedream engine."""

from __future__ import annotations

import base64
import os
import re
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping


_TRUE_VALUES = {"1", "true", "yes", "on"}
_REDACTED_KEYS = {"b64_json", "image_bytes", "data"}


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (list, tuple)):
        return any(parse_bool(item) for item in value)
    return str(value).strip().lower() in _TRUE_VALUES


def parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
        if value is None:
            return None
    text = str(value).strip()
    match = re.match(r"^[+-]?\d+", text)
    if not match:
        return None
    return int(match.group(0))


def first_env(*keys: str) -> str | None:
    for key in keys:
        value = os.getenv(key)
        if value and value.strip():
            return value.strip()
    return None


def to_data_uri(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type or 'application/octet-stream'};base64,{encoded}"


def sanitize_payload(payload: Any) -> Any:
    """Copy ``payload`` for logs and events with image data replaced by size markers."""
    if isinstance(payload, str):
        return f"<data-uri:{len(payload)}>" if payload.startswith("data:") else payload
    if isinstance(payload, (bytes, bytearray)):
        return f"<bytes:{len(payload)}>"
    if payload is None or isinstance(payload, (int, float, bool)):
        return payload
    if isinstance(payload, Mapping):
        return {
            str(key): "<omitted>" if str(key).lower() in _REDACTED_KEYS else sanitize_payload(value)
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item) for item in payload]
    return str(payload)


def load_dotenv(path: Path | None = None, override: bool = False) -> bool:
    """Export ``KEY=value`` pairs from a ``.env`` file into ``os.environ``.

    Without ``path`` the file next to the project root is used. Existing
    variables win unless ``override`` is set. Returns whether a file was read.
    """
    env_path = path or _locate_env_file(Path.cwd())
    if not env_path.is_file():
        return False
    for key, value in _env_pairs(env_path.read_text(encoding="utf-8")):
        if override or key not in os.environ:
            os.environ[key] = value
    return True


def _env_pairs(text: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for line in text.splitlines():
        entry = line.strip().removeprefix("export ").strip()
        if entry.startswith("#") or "=" not in entry:
            continue
        key, _, value = entry.partition("=")
        key, value = key.strip(), value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        if key:
            pairs.append((key, value))
    return pairs


def _locate_env_file(start: Path) -> Path:
    root = _project_root(start)
    if root is not None and (root / ".env").is_file():
        return root / ".env"
    return start / ".env"


def _project_root(start: Path) -> Path | None:
    for candidate in (start, *start.parents):
        if (candidate / "seedream_engine").is_dir():
            return candidate
        pyproject = candidate / "pyproject.toml"
        if not pyproject.is_file():
            continue
        try:
            project = tomllib.loads(pyproject.read_text(encoding="utf-8")).get("project", {})
        except (OSError, tomllib.TOMLDecodeError):
            continue
        if project.get("name") == "seedream-engine":
            return candidate
    return None
