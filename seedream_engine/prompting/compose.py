"""Prompt assembly from the user prompt and per-reference guidance."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from ..providers.base import ReferenceImage


def reference_guidance(references: Sequence[ReferenceImage], label: str = "Image") -> list[str]:
    lines: list[str] = []
    for index, reference in enumerate(references, start=1):
        if not reference.instruction:
            continue
        name = reference.original_name or f"image-{index}"
        lines.append(f"{label} {index} ({name}): {reference.instruction}")
    return lines


def compose_final_prompt(prompt: str, references: Sequence[ReferenceImage]) -> str:
    segments = [prompt.strip()]
    guidance = reference_guidance(references)
    if guidance:
        segments.append("Reference guidance:\n" + "\n".join(guidance))
    return "\n\n".join(segments)
