"""Adaptive re-encoding of reference images under byte and pixel budgets."""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import DEFAULT_MAX_IMAGE_DIMENSION, MAX_IMAGE_BYTES, MIN_IMAGE_DIMENSION
from ..errors import SizeBudgetExceededError, UnsupportedImageError
from ..utils import to_data_uri


logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "WEBP"
OUTPUT_CONTENT_TYPE = "image/webp"
_WEBP_METHOD = 5


@dataclass(frozen=True)
class NormalizerConfig:
    max_bytes: int = MAX_IMAGE_BYTES
    max_dimension: int = DEFAULT_MAX_IMAGE_DIMENSION
    min_dimension: int = MIN_IMAGE_DIMENSION
    initial_quality: int = 90
    quality_floor: int = 50
    quality_step: int = 10
    shrink_ratio: float = 0.85
    max_attempts: int = 8


@dataclass(frozen=True)
class ImageAsset:
    data: bytes
    content_type: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class NormalizationResult:
    data: bytes
    content_type: str
    width: int
    height: int
    quality: int
    attempts: int

    @property
    def byte_length(self) -> int:
        return len(self.data)

    def as_asset(self) -> ImageAsset:
        return ImageAsset(self.data, self.content_type, self.width, self.height)

    def as_data_uri(self) -> str:
        return to_data_uri(self.data, self.content_type)


class ImageNormalizer:
    def __init__(self, config: NormalizerConfig | None = None) -> None:
        self.config = config or NormalizerConfig()

    def normalize(self, buffer: bytes, declared_mime_type: str | None = None) -> NormalizationResult:
        """Re-encode ``buffer`` so it fits the configured byte and pixel budgets.

        ``declared_mime_type`` is only used for diagnostics; the decoded pixels
        decide what the input is. Raises ``UnsupportedImageError`` when the
        buffer cannot be decoded and ``SizeBudgetExceededError`` when no attempt
        fits under ``max_bytes``.
        """
        config = self.config
        image = _decode(buffer, declared_mime_type)
        original_width, original_height = image.size

        scale = min(config.max_dimension / original_width, config.max_dimension / original_height, 1.0)
        floor_dimension = min(config.min_dimension, config.max_dimension)
        min_width = min(original_width, floor_dimension)
        min_height = min(original_height, floor_dimension)
        width, height = _scaled_size(image.size, scale, (min_width, min_height), config.max_dimension)

        quality = config.initial_quality
        ladder: list[tuple[int, int, int, int]] = []
        for attempt in range(1, config.max_attempts + 1):
            encoded = _encode(image, width, height, quality)
            ladder.append((width, height, quality, len(encoded)))
            if len(encoded) <= config.max_bytes:
                logger.debug(
                    "Normalized %sx%s image to %sx%s webp q%s (%s bytes, attempt %s)",
                    original_width,
                    original_height,
                    width,
                    height,
                    quality,
                    len(encoded),
                    attempt,
                )
                return NormalizationResult(
                    data=encoded,
                    content_type=OUTPUT_CONTENT_TYPE,
                    width=width,
                    height=height,
                    quality=quality,
                    attempts=attempt,
                )
            if quality > config.quality_floor:
                quality = max(config.quality_floor, quality - config.quality_step)
            else:
                scale *= config.shrink_ratio
                width, height = _scaled_size(image.size, scale, (min_width, min_height), config.max_dimension)

        raise SizeBudgetExceededError(
            f"Unable to compress image under {config.max_bytes} bytes after {config.max_attempts} attempts.",
            original_size=(original_width, original_height),
            max_bytes=config.max_bytes,
            attempts=ladder,
        )


def _decode(buffer: bytes, declared_mime_type: str | None) -> Image.Image:
    if not buffer:
        raise UnsupportedImageError("Image buffer is empty.", declared_mime_type=declared_mime_type)
    try:
        with Image.open(io.BytesIO(buffer)) as opened:
            opened.load()
            image = ImageOps.exif_transpose(opened)
            if image is opened:
                image = opened.copy()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as exc:
        raise UnsupportedImageError(
            f"Unable to decode image ({declared_mime_type or 'unknown type'}).",
            declared_mime_type=declared_mime_type,
        ) from exc
    if image.width <= 0 or image.height <= 0:
        raise UnsupportedImageError("Decoded image has no pixels.", declared_mime_type=declared_mime_type)
    return _to_webp_mode(image)


def _to_webp_mode(image: Image.Image) -> Image.Image:
    if image.mode in {"RGB", "RGBA"}:
        return image
    has_alpha = image.mode in {"LA", "PA", "La"} or (image.mode == "P" and "transparency" in image.info)
    return image.convert("RGBA" if has_alpha else "RGB")


def _encode(image: Image.Image, width: int, height: int, quality: int) -> bytes:
    resized = image if (width, height) == image.size else image.resize((width, height), Image.Resampling.LANCZOS)
    out = io.BytesIO()
    resized.save(out, format=OUTPUT_FORMAT, quality=quality, method=_WEBP_METHOD)
    return out.getvalue()


def _scaled_size(
    original: tuple[int, int], scale: float, floor: tuple[int, int], max_dimension: int
) -> tuple[int, int]:
    return (
        _clamp(math.floor(original[0] * scale), floor[0], max_dimension),
        _clamp(math.floor(original[1] * scale), floor[1], max_dimension),
    )


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))
