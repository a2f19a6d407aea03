from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING

from storybook.services.gemini import (
    GeminiContentFilterError,
    GeminiEmptyResponseError,
    GeminiNoImageDataError,
)
from storybook.services.prompt_builder import (
    build_image_prompt,
    build_translation_prompt,
    clean_optimized_prompt,
)

if TYPE_CHECKING:
    from storybook.services.gemini import GeminiClient

logger = logging.getLogger(__name__)

# Names used by callers that only care about the illustration failure kind.
SafetyFilteredError = GeminiContentFilterError
EmptyResponseError = GeminiEmptyResponseError
NoImageDataError = GeminiNoImageDataError


def to_data_uri(image_bytes: bytes, mime_type: str = "image/png") -> str:
    payload = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type or 'image/png'};base64,{payload}"


class ImageGenerator:
    """Turns one scene prompt into an image data URI.

    With ``translate_prompts`` the scene prompt is first rewritten by the text
    model into an English illustration instruction; an empty rewrite falls back
    to the original prompt.
    """

    def __init__(self, gemini: "GeminiClient", *, translate_prompts: bool = True) -> None:
        self._gemini = gemini
        self._translate_prompts = translate_prompts

    def optimize_prompt(self, scene_prompt: str) -> str:
        try:
            rewritten = self._gemini.generate_text(build_translation_prompt(scene_prompt))
        except (GeminiEmptyResponseError, GeminiContentFilterError) as exc:
            logger.info("prompt rewrite returned nothing; using original prompt (%s)", exc)
            return scene_prompt
        optimized = clean_optimized_prompt(rewritten)
        return optimized or scene_prompt

    def generate(self, scene_prompt: str) -> str:
        if not scene_prompt or not scene_prompt.strip():
            raise ValueError("scene prompt must not be empty")

        prompt = self.optimize_prompt(scene_prompt) if self._translate_prompts else scene_prompt
        image_bytes, mime_type = self._gemini.generate_image(build_image_prompt(prompt))
        logger.info("scene image generated mime_type=%s bytes=%s", mime_type, len(image_bytes))
        return to_data_uri(image_bytes, mime_type)
