"""
Story analysis: one JSON-mode model call turning raw story text into a
title, a moral and an ordered scene list.

A response that does not parse into the full shape is a failure; partial
results are never returned.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from storybook.core.exceptions import AnalysisError, AnalysisRateLimitedError
from storybook.services.json_parser import parse_json_object
from storybook.services.prompt_builder import ANALYSIS_RESPONSE_SCHEMA, build_analysis_prompt
from storybook.services.retry import RetryPolicy, is_rate_limit_error, with_retry

if TYPE_CHECKING:
    from storybook.services.gemini import GeminiClient

logger = logging.getLogger(__name__)


class AnalyzedScene(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    image_prompt: str = Field(alias="imagePrompt")
    story_text: str = Field(alias="storyText")

    @field_validator("image_prompt", "story_text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class StoryAnalysis(BaseModel):
    title: str
    moral: str
    scenes: list[AnalyzedScene] = Field(min_length=1)

    @field_validator("title", "moral")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class StoryAnalyzer:
    def __init__(
        self,
        gemini: "GeminiClient",
        *,
        retry_policy: RetryPolicy | None = None,
        min_scenes: int = 7,
        max_scenes: int = 9,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._gemini = gemini
        self._retry_policy = retry_policy or RetryPolicy()
        self._min_scenes = min_scenes
        self._max_scenes = max_scenes
        self._sleep = sleep

    def analyze(self, story_text: str) -> StoryAnalysis:
        """Split ``story_text`` into scenes.

        Raises:
            ValueError: If the story text is empty or whitespace only
            AnalysisRateLimitedError: If the model stayed rate limited through every retry
            AnalysisError: On any other call failure or an unparseable response
        """
        if not story_text or not story_text.strip():
            raise ValueError("story text must not be empty")

        prompt = build_analysis_prompt(
            story_text,
            min_scenes=self._min_scenes,
            max_scenes=self._max_scenes,
        )
        try:
            raw_text = with_retry(
                lambda: self._gemini.generate_json_text(prompt, ANALYSIS_RESPONSE_SCHEMA),
                policy=self._retry_policy,
                sleep=self._sleep,
            )
        except Exception as exc:  # noqa: BLE001
            if is_rate_limit_error(exc):
                logger.warning("story analysis rate limited: %s", exc)
                raise AnalysisRateLimitedError(f"analysis rate limited: {exc}") from exc
            logger.error("story analysis call failed: %r", exc)
            raise AnalysisError(f"analysis call failed: {exc}") from exc

        try:
            payload = parse_json_object(raw_text)
            analysis = StoryAnalysis.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            logger.error("story analysis response rejected: %s", exc)
            raise AnalysisError(f"analysis response malformed: {exc}") from exc

        logger.info(
            "story analyzed title=%s scene_count=%s",
            analysis.title,
            len(analysis.scenes),
        )
        return analysis
