"""Provider registry."""

from __future__ import annotations

from ..config import Settings
from ..models.version_cache import ModelVersionCache
from .base import ProviderRegistry
from .fal import FalProvider
from .nano_banana import NanoBananaProvider
from .replicate import ReplicateProvider


def default_registry(
    settings: Settings | None = None,
    version_cache: ModelVersionCache | None = None,
) -> ProviderRegistry:
    settings = settings or Settings.from_env()
    return ProviderRegistry(
        [
            ReplicateProvider(settings, version_cache=version_cache),
            FalProvider(settings),
            NanoBananaProvider(settings),
        ]
    )
