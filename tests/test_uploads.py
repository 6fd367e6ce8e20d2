from __future__ import annotations

import json

from seedream_engine.uploads import (
    Upload,
    parse_instructions,
    request_from_form,
    resolve_upload_instruction,
    split_upload_name,
)


def test_parse_instructions_accepts_array_and_repeated_fields() -> None:
    entries = [{"id": "a", "instruction": "keep pose"}, {"id": "b", "instruction": "use palette"}]

    assert parse_instructions(json.dumps(entries)) == entries
    assert parse_instructions([json.dumps(entry) for entry in entries]) == entries
    assert parse_instructions({"id": "a"}) == [{"id": "a"}]


def test_parse_instructions_tolerates_bad_payloads() -> None:
    assert parse_instructions(None) == []
    assert parse_instructions("{not json") == []
    assert parse_instructions(json.dumps(["x", {"id": "a"}])) == [{"id": "a"}]


def test_split_upload_name() -> None:
    assert split_upload_name("img-1__my__cat.png") == ("img-1", "my__cat.png")
    assert split_upload_name("cat.png") == ("cat.png", "cat.png")
    image_id, original = split_upload_name("")
    assert image_id.startswith("upload-") and image_id == original


def test_resolve_upload_instruction_matches_by_id() -> None:
    upload = Upload("img-1__cat.png", b"data", "image/png")
    instructions = [{"id": "img-1", "instruction": "  keep the pose ", "originalName": "Cat Photo.png"}]

    info = resolve_upload_instruction(upload, instructions)

    assert info.image_id == "img-1"
    assert info.original_name == "Cat Photo.png"
    assert info.instruction == "keep the pose"


def test_resolve_upload_instruction_without_match() -> None:
    info = resolve_upload_instruction(Upload("img-2__dog.png", b"data"), [{"id": "img-1", "instruction": "x"}])

    assert info.original_name == "dog.png"
    assert info.instruction == ""


def test_request_from_form_parses_typed_fields() -> None:
    request = request_from_form(
        {
            "prompt": "  a cat ",
            "provider": "FAL",
            "negativePrompt": "blurry",
            "size": "custom",
            "width": "2048",
            "height": ["1536"],
            "aspect_ratio": "16:9",
            "sequential_image_generation": "auto",
            "max_images": "3",
            "disableSafetyFilter": "true",
            "fal_seed": "not-a-number",
        }
    )

    assert request.prompt == "a cat"
    assert request.provider == "fal"
    assert (request.width, request.height) == (2048, 1536)
    assert request.aspect_ratio == "16:9"
    assert request.sequential_image_generation == "auto"
    assert request.max_images == 3
    assert request.disable_safety_filter is True
    assert request.seed is None
    assert request.sync_mode is False


def test_request_from_form_defaults_to_replicate() -> None:
    request = request_from_form({"prompt": "a cat"})

    assert request.provider == "replicate"
    assert request.references == ()


def test_request_from_form_reads_fal_options() -> None:
    request = request_from_form({"prompt": "a cat", "provider": "fal", "fal_seed": "7", "fal_sync_mode": "true"})

    assert request.seed == 7
    assert request.sync_mode is True
