"""
Prompt construction for story analysis and scene illustration.

The consistency and safety rules embedded here are advisory text for the model;
nothing in this system checks that generated images follow them.
"""

from __future__ import annotations

import re

from google.genai import types

from storybook.prompts.loader import render_prompt

ANALYSIS_RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "title": types.Schema(type=types.Type.STRING),
        "scenes": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "id": types.Schema(type=types.Type.INTEGER),
                    "imagePrompt": types.Schema(type=types.Type.STRING),
                    "storyText": types.Schema(type=types.Type.STRING),
                },
                required=["id", "imagePrompt", "storyText"],
            ),
        ),
        "moral": types.Schema(type=types.Type.STRING),
    },
    required=["title", "scenes", "moral"],
)

_LABEL_PREFIX = re.compile(r"^\s*(?:\*\*)?(?:english\s+)?(?:prompt|description|output)(?:\*\*)?\s*[:：]\s*", re.IGNORECASE)
_QUOTE_PAIRS = {
    '"': '"',
    "'": "'",
    "`": "`",
    "“": "”",
    "‘": "’",
    "「": "」",
}


def build_analysis_prompt(story_text: str, *, min_scenes: int = 7, max_scenes: int = 9) -> str:
    if min_scenes > max_scenes:
        raise ValueError(f"min_scenes ({min_scenes}) must not exceed max_scenes ({max_scenes})")
    return render_prompt(
        "prompt_story_analysis",
        story_text=story_text.strip(),
        min_scenes=min_scenes,
        max_scenes=max_scenes,
    )


def build_translation_prompt(image_prompt: str) -> str:
    return render_prompt("prompt_image_translation", image_prompt=image_prompt.strip())


def clean_optimized_prompt(text: str) -> str:
    """Strip label prefixes and wrapping quotes that models add around a rewritten prompt."""
    cleaned = (text or "").strip()
    cleaned = _LABEL_PREFIX.sub("", cleaned, count=1).strip()
    while len(cleaned) >= 2 and _QUOTE_PAIRS.get(cleaned[0]) == cleaned[-1]:
        inner = cleaned[1:-1]
        # A repeated quote mark means the ends belong to separate quoted words.
        if cleaned[0] in inner or cleaned[-1] in inner:
            break
        cleaned = inner.strip()
    return cleaned


def build_image_prompt(scene_prompt: str) -> str:
    return render_prompt("prompt_image_render", scene_prompt=scene_prompt.strip().rstrip(".。"))
