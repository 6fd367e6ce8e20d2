from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from seedream_engine.config import Settings
from seedream_engine.errors import JobFailedError, ProviderConfigError
from seedream_engine.imaging.normalize import ImageAsset
from seedream_engine.providers.base import GenerationRequest, ReferenceImage
from seedream_engine.providers.fal import FalProvider, build_fal_input, compute_fal_image_size


QUEUE_URL = "https://queue.fal.run/fal-ai/bytedance/seedream/v4/edit"
STATUS_URL = f"{QUEUE_URL}/requests/r1/status"
RESPONSE_URL = f"{QUEUE_URL}/requests/r1"


def _reference(index: int) -> ReferenceImage:
    return ReferenceImage(
        asset=ImageAsset(f"img-{index}".encode(), "image/webp", 64, 64),
        image_id=f"id-{index}",
        original_name=f"ref-{index}.png",
    )


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.mark.parametrize(
    ("size", "aspect_ratio", "width", "height", "expected"),
    [
        ("2K", "16:9", None, None, {"width": 3641, "height": 2048}),
        ("4K", "16:9", None, None, {"width": 4096, "height": 2304}),
        ("1K", "", None, None, {"width": 1024, "height": 1024}),
        ("1K", "1:1", None, None, {"width": 1024, "height": 1024}),
        ("custom", "", 5000, 500, {"width": 4096, "height": 1024}),
        ("custom", "", None, None, None),
        ("", "16:9", None, None, None),
        ("8K", "", None, None, None),
    ],
)
def test_compute_fal_image_size(size, aspect_ratio, width, height, expected) -> None:
    assert compute_fal_image_size(size, aspect_ratio, width, height) == expected


def test_build_fal_input_keeps_last_ten_references() -> None:
    request = GenerationRequest(prompt="a cat", provider="fal", references=[_reference(i) for i in range(12)])

    payload = build_fal_input(request)

    assert len(payload["image_urls"]) == 10
    assert payload["image_urls"][0] == _reference(2).data_uri
    assert payload["num_images"] == 1
    assert payload["enable_safety_checker"] is True
    assert "max_images" not in payload


def test_build_fal_input_bounds_images_by_reference_count() -> None:
    request = GenerationRequest(
        prompt="a cat",
        provider="fal",
        references=[_reference(i) for i in range(12)],
        sequential_image_generation="auto",
        max_images=15,
        seed=42,
        sync_mode=True,
        disable_safety_filter=True,
    )

    payload = build_fal_input(request)

    assert payload["num_images"] == 5
    assert payload["max_images"] == 5
    assert payload["seed"] == 42
    assert payload["sync_mode"] is True
    assert payload["enable_safety_checker"] is False


def test_generate_polls_queue_and_fetches_response() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "POST":
            return httpx.Response(
                200,
                json={
                    "request_id": "r1",
                    "status": "IN_QUEUE",
                    "status_url": STATUS_URL,
                    "response_url": RESPONSE_URL,
                },
            )
        if str(request.url) == STATUS_URL:
            polls = sum(1 for req in seen if str(req.url) == STATUS_URL)
            status = "IN_PROGRESS" if polls == 1 else "COMPLETED"
            return httpx.Response(200, json={"status": status})
        if str(request.url) == RESPONSE_URL:
            return httpx.Response(200, json={"images": [{"url": "https://fal.media/out.png"}]})
        return httpx.Response(404)

    provider = FalProvider(Settings(fal_key="fal-test"), transport=httpx.MockTransport(handler), sleep=_no_sleep)
    request = GenerationRequest(prompt="a cat", provider="fal", references=[_reference(0)], size="2K")

    result = asyncio.run(provider.generate(request))

    assert result.output == ["https://fal.media/out.png"]
    assert result.model == "fal-ai/bytedance/seedream/v4/edit"
    assert result.warnings == []
    submission = seen[0]
    assert str(submission.url) == QUEUE_URL
    assert submission.headers["Authorization"] == "Key fal-test"
    assert json.loads(submission.content)["image_size"] == {"width": 2048, "height": 2048}
    assert str(seen[-1].url) == RESPONSE_URL


def test_generate_reports_failed_queue_job() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"request_id": "r1", "status": "IN_QUEUE", "status_url": STATUS_URL})
        return httpx.Response(200, json={"status": "FAILED", "error": {"message": "content policy violation"}})

    provider = FalProvider(Settings(fal_key="fal-test"), transport=httpx.MockTransport(handler), sleep=_no_sleep)

    with pytest.raises(JobFailedError, match="content policy violation"):
        asyncio.run(provider.generate(GenerationRequest(prompt="a cat", provider="fal", references=[_reference(0)])))


def test_generate_requires_key() -> None:
    provider = FalProvider(Settings(fal_key=None))

    with pytest.raises(ProviderConfigError, match="FAL_KEY"):
        asyncio.run(provider.generate(GenerationRequest(prompt="a cat", provider="fal")))
