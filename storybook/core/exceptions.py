"""
Application-level exception types.

Model-transport errors live in ``storybook.services.gemini``; the types here
are what the API layer maps to HTTP responses.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class AnalysisError(AppError):
    """Raised when a story cannot be analyzed into scenes."""

    default_detail = "Story analysis failed. Check your network connection and try again."

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message, detail=detail or self.default_detail)


class AnalysisRateLimitedError(AnalysisError):
    """Raised when analysis keeps hitting the model's rate limit."""

    default_detail = "The story service is busy right now. Please wait a moment and try again."


class ConfigurationError(AppError):
    """Raised when required configuration is missing or invalid."""


class StoryNotFoundError(AppError):
    """Raised when a story session cannot be found."""

    def __init__(self, story_id: object) -> None:
        super().__init__(f"story not found: {story_id}", detail="story not found")
        self.story_id = story_id


class SceneNotFoundError(AppError):
    """Raised when a scene cannot be found in its story."""

    def __init__(self, scene_id: object) -> None:
        super().__init__(f"scene not found: {scene_id}", detail="scene not found")
        self.scene_id = scene_id


class InvalidStateError(AppError):
    """Raised when an action is not allowed in the story's current phase."""
