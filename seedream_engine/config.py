"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .utils import first_env, load_dotenv, parse_int


MIB = 1024 * 1024

MAX_IMAGE_BYTES = 10 * MIB
MAX_UPLOAD_SOURCE_BYTES = 40 * MIB
MAX_REMOTE_IMPORT_SOURCE_BYTES = 80 * MIB
DEFAULT_MAX_IMAGE_DIMENSION = 2048
MIN_IMAGE_DIMENSION = 256

DEFAULT_REPLICATE_MODEL = "bytedance/seedream-4"
DEFAULT_FAL_MODEL = "fal-ai/bytedance/seedream/v4/edit"
DEFAULT_NANO_BANANA_MODEL = "gemini-2.5-flash-image"
DEFAULT_GROK_MODEL = "grok-4-fast"
DEFAULT_GROK_URL = "https://api.x.ai/v1/chat/completions"

DEFAULT_POLL_INTERVAL_S = 1.5
DEFAULT_POLL_TIMEOUT_S = 600.0
DEFAULT_REQUEST_TIMEOUT_S = 30.0


@dataclass(frozen=True)
class Settings:
    replicate_api_token: str | None = None
    replicate_model: str = DEFAULT_REPLICATE_MODEL
    fal_key: str | None = None
    fal_model: str = DEFAULT_FAL_MODEL
    gemini_api_key: str | None = None
    nano_banana_model: str = DEFAULT_NANO_BANANA_MODEL
    gemini_enabled: bool = True
    grok_api_key: str | None = None
    grok_model: str = DEFAULT_GROK_MODEL
    grok_api_url: str = DEFAULT_GROK_URL
    grok_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    max_image_dimension: int = DEFAULT_MAX_IMAGE_DIMENSION
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    # None disables the deadline entirely.
    poll_timeout_s: float | None = DEFAULT_POLL_TIMEOUT_S
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        enable_gemini = os.getenv("ENABLE_GEMINI")
        grok_timeout_ms = parse_int(os.getenv("GROK_API_TIMEOUT_MS"))
        max_dimension = parse_int(os.getenv("MAX_IMAGE_DIMENSION"))
        return cls(
            replicate_api_token=first_env("REPLICATE_API_TOKEN"),
            replicate_model=first_env("SEEDREAM4_MODEL_VERSION", "SEEDREAM_MODEL_VERSION")
            or DEFAULT_REPLICATE_MODEL,
            fal_key=first_env("FAIAI_API_TOKEN", "FAL_KEY"),
            fal_model=first_env("FAL_MODEL") or DEFAULT_FAL_MODEL,
            gemini_api_key=first_env("NANO_BANANA_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"),
            nano_banana_model=first_env("NANO_BANANA_MODEL") or DEFAULT_NANO_BANANA_MODEL,
            gemini_enabled=not (enable_gemini is not None and enable_gemini.strip().lower() == "false"),
            grok_api_key=first_env("XAI_API_KEY", "GROK_API_KEY"),
            grok_model=first_env("GROK_MODEL", "GROK_API_MODEL") or DEFAULT_GROK_MODEL,
            grok_api_url=first_env("GROK_API_BASE_URL") or DEFAULT_GROK_URL,
            grok_timeout_s=(grok_timeout_ms / 1000.0) if grok_timeout_ms and grok_timeout_ms > 0 else DEFAULT_REQUEST_TIMEOUT_S,
            max_image_dimension=max_dimension if max_dimension and max_dimension > 0 else DEFAULT_MAX_IMAGE_DIMENSION,
            poll_interval_s=_env_float("JOB_POLL_INTERVAL_S", DEFAULT_POLL_INTERVAL_S),
            poll_timeout_s=_resolve_poll_timeout(os.getenv("JOB_POLL_TIMEOUT_S")),
        )


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _resolve_poll_timeout(raw: str | None) -> float | None:
    if raw is None or not raw.strip():
        return DEFAULT_POLL_TIMEOUT_S
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_POLL_TIMEOUT_S
    if value <= 0:
        return None
    return value
