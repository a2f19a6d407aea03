"""
Centralized Gemini client factory.

The client is built once at application startup and injected into the
analyzer and image generator, so a missing credential fails the process
immediately instead of on the first request.
"""

from __future__ import annotations

from storybook.core.settings import settings
from storybook.services.gemini import GeminiClient


class GeminiNotConfiguredError(RuntimeError):
    """Raised when Gemini API credentials are missing."""

    def __init__(self) -> None:
        super().__init__("Gemini is not configured. Set GEMINI_API_KEY (or API_KEY).")


def build_gemini_client() -> GeminiClient:
    """Build a GeminiClient from application settings.

    Raises:
        GeminiNotConfiguredError: If no API key is set.
    """
    if not settings.gemini_api_key:
        raise GeminiNotConfiguredError()

    return GeminiClient(
        api_key=settings.gemini_api_key,
        text_model=settings.gemini_text_model,
        image_model=settings.gemini_image_model,
        image_aspect_ratio=settings.gemini_image_aspect_ratio,
    )
