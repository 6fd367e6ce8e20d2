"""Provider base classes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence

from ..imaging.normalize import ImageAsset
from ..utils import to_data_uri


@dataclass(frozen=True)
class ReferenceImage:
    asset: ImageAsset
    image_id: str
    original_name: str
    instruction: str = ""

    @property
    def data_uri(self) -> str:
        return to_data_uri(self.asset.data, self.asset.content_type)


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    provider: str = "replicate"
    negative_prompt: str = ""
    references: Sequence[ReferenceImage] = ()
    size: str = ""
    aspect_ratio: str = ""
    width: int | None = None
    height: int | None = None
    sequential_image_generation: str = ""
    max_images: int | None = None
    disable_safety_filter: bool = False
    seed: int | None = None
    sync_mode: bool = False


@dataclass
class ProviderResult:
    output: list[str]
    model: str
    provider_request: Mapping[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class ImageProvider(Protocol):
    name: str
    status_label: str

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        ...


class ProviderRegistry:
    def __init__(self, providers: Iterable[ImageProvider]) -> None:
        self._providers = {provider.name: provider for provider in providers}

    def get(self, name: str) -> ImageProvider | None:
        return self._providers.get(name)

    def list(self) -> list[str]:
        return sorted(self._providers.keys())
