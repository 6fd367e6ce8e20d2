from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from seedream_engine.config import Settings
from seedream_engine.errors import JobFailedError, ProviderConfigError
from seedream_engine.imaging.normalize import ImageAsset
from seedream_engine.models.version_cache import ModelVersionCache
from seedream_engine.providers.base import GenerationRequest, ReferenceImage
from seedream_engine.providers.replicate import ReplicateProvider, build_replicate_input, resolve_model_version


VERSION_ID = "a" * 64


def _reference(name: str = "cat.png", instruction: str = "") -> ReferenceImage:
    return ReferenceImage(
        asset=ImageAsset(b"webp-bytes", "image/webp", 32, 32),
        image_id="img-1",
        original_name=name,
        instruction=instruction,
    )


async def _no_sleep(seconds: float) -> None:
    return None


def test_build_input_carries_references_as_data_uris() -> None:
    request = GenerationRequest(prompt="a cat", references=[_reference()])

    payload = build_replicate_input(request)

    assert payload["prompt"] == "a cat"
    assert payload["image_input"] == ["data:image/webp;base64,d2VicC1ieXRlcw=="]
    assert "negative_prompt" not in payload
    assert "enable_safety_checker" not in payload


def test_build_input_keeps_custom_dimensions_in_range_only() -> None:
    request = GenerationRequest(prompt="a cat", size="custom", width=2048, height=512)

    payload = build_replicate_input(request)

    assert payload["size"] == "custom"
    assert payload["width"] == 2048
    assert "height" not in payload


def test_build_input_sequential_and_safety_options() -> None:
    request = GenerationRequest(
        prompt="a cat",
        negative_prompt="blurry",
        aspect_ratio="16:9",
        sequential_image_generation="auto",
        max_images=4,
        disable_safety_filter=True,
    )

    payload = build_replicate_input(request)

    assert payload["negative_prompt"] == "blurry"
    assert payload["aspect_ratio"] == "16:9"
    assert payload["sequential_image_generation"] == "auto"
    assert payload["max_images"] == 4
    assert payload["enable_safety_checker"] is False


def test_build_input_drops_out_of_range_max_images() -> None:
    request = GenerationRequest(prompt="a cat", sequential_image_generation="auto", max_images=40)

    assert "max_images" not in build_replicate_input(request)


def test_resolve_model_version_accepts_pinned_identifiers() -> None:
    async def scenario() -> tuple[str, str]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(_unexpected)) as client:
            pinned = await resolve_model_version(client, f"bytedance/seedream-4:{VERSION_ID}")
            bare = await resolve_model_version(client, VERSION_ID)
        return pinned, bare

    assert asyncio.run(scenario()) == (VERSION_ID, VERSION_ID)


def test_resolve_model_version_falls_back_to_versions_listing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/models/bytedance/seedream-4":
            return httpx.Response(200, json={"latest_version": None})
        if request.url.path == "/v1/models/bytedance/seedream-4/versions":
            return httpx.Response(200, json={"results": [{"id": "v-from-list"}]})
        return httpx.Response(404)

    async def scenario() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await resolve_model_version(client, "bytedance/seedream-4")

    assert asyncio.run(scenario()) == "v-from-list"


def test_resolve_model_version_rejects_invalid_slug() -> None:
    async def scenario() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(_unexpected)) as client:
            return await resolve_model_version(client, "not-a-slug")

    with pytest.raises(ProviderConfigError):
        asyncio.run(scenario())


def test_generate_resolves_version_once_and_polls_prediction() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "GET" and request.url.path == "/v1/models/bytedance/seedream-4":
            return httpx.Response(200, json={"latest_version": {"id": VERSION_ID}})
        if request.method == "POST" and request.url.path == "/v1/predictions":
            return httpx.Response(
                201,
                json={
                    "id": "p1",
                    "status": "starting",
                    "urls": {"get": "https://api.replicate.com/v1/predictions/p1"},
                },
            )
        if request.method == "GET" and request.url.path == "/v1/predictions/p1":
            return httpx.Response(200, json={"id": "p1", "status": "succeeded", "output": ["https://cdn/out.png"]})
        return httpx.Response(404)

    cache = ModelVersionCache()
    provider = ReplicateProvider(
        Settings(replicate_api_token="r8-test"),
        version_cache=cache,
        transport=httpx.MockTransport(handler),
        sleep=_no_sleep,
    )
    request = GenerationRequest(prompt="a cat", references=[_reference()])

    async def scenario():
        first = await provider.generate(request)
        second = await provider.generate(request)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.output == ["https://cdn/out.png"]
    assert second.output == ["https://cdn/out.png"]
    assert first.model == VERSION_ID
    assert cache.resolutions == 1
    model_lookups = [req for req in seen if req.url.path == "/v1/models/bytedance/seedream-4"]
    assert len(model_lookups) == 1

    submission = next(req for req in seen if req.method == "POST")
    assert submission.headers["Authorization"] == "Token r8-test"
    body = json.loads(submission.content)
    assert body["version"] == VERSION_ID
    assert body["input"]["prompt"] == "a cat"
    assert "base64" not in json.dumps(first.provider_request)


def test_generate_surfaces_failed_prediction() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"id": "p9", "status": "failed", "error": "NSFW content detected"})

    provider = ReplicateProvider(
        Settings(replicate_api_token="r8-test", replicate_model=VERSION_ID),
        transport=httpx.MockTransport(handler),
        sleep=_no_sleep,
    )

    with pytest.raises(JobFailedError, match="NSFW content detected"):
        asyncio.run(provider.generate(GenerationRequest(prompt="a cat", references=[_reference()])))


def test_generate_requires_token() -> None:
    provider = ReplicateProvider(Settings(replicate_api_token=None))

    with pytest.raises(ProviderConfigError, match="REPLICATE_API_TOKEN"):
        asyncio.run(provider.generate(GenerationRequest(prompt="a cat")))


def _unexpected(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")
