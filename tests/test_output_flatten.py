from __future__ import annotations

import pytest

from seedream_engine.jobs.outputs import flatten_output_urls


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        (None, []),
        ("", []),
        ("  https://cdn/a.png  ", ["https://cdn/a.png"]),
        (["https://cdn/a.png", "https://cdn/b.png"], ["https://cdn/a.png", "https://cdn/b.png"]),
        ({"url": "https://cdn/a.png"}, ["https://cdn/a.png"]),
        ({"image_url": "https://cdn/a.png"}, ["https://cdn/a.png"]),
        ({"image": {"url": "https://cdn/a.png"}}, ["https://cdn/a.png"]),
        ({"images": [{"url": "https://cdn/a.png"}, "https://cdn/b.png"]}, ["https://cdn/a.png", "https://cdn/b.png"]),
        ({"output": ["https://cdn/a.png"]}, ["https://cdn/a.png"]),
        ({"output": [{"image": {"url": "c"}}]}, ["c"]),
        ({"status": "succeeded"}, []),
        (42, []),
    ],
)
def test_flatten_output_urls(output, expected) -> None:
    assert flatten_output_urls(output) == expected


def test_flatten_prefers_nested_lists_over_direct_url() -> None:
    output = {"url": "https://cdn/direct.png", "images": [{"url": "https://cdn/other.png"}]}
    assert flatten_output_urls(output) == ["https://cdn/other.png"]


def test_flatten_drops_entries_that_resolve_to_nothing() -> None:
    output = [{"url": ""}, None, "https://cdn/a.png", {"meta": 1}, [["https://cdn/b.png"]]]
    assert flatten_output_urls(output) == ["https://cdn/a.png", "https://cdn/b.png"]
