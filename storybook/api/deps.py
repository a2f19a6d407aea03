import time
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request

from storybook.core.exceptions import ConfigurationError
from storybook.core.settings import settings
from storybook.services.gemini import GeminiClient
from storybook.services.image_generator import ImageGenerator
from storybook.services.orchestrator import SceneOrchestrator
from storybook.services.retry import RetryPolicy
from storybook.services.sessions import StorySessionStore
from storybook.services.story_analyzer import StoryAnalyzer


@dataclass
class StorybookServices:
    store: StorySessionStore
    analyzer: StoryAnalyzer
    orchestrator: SceneOrchestrator


def build_services(gemini: GeminiClient, *, sleep: Callable[[float], None] = time.sleep) -> StorybookServices:
    """Wire the analyzer, generator and orchestrator around one explicitly built client."""
    if settings.analysis_min_scenes > settings.analysis_max_scenes:
        raise ConfigurationError(
            f"ANALYSIS_MIN_SCENES ({settings.analysis_min_scenes}) exceeds "
            f"ANALYSIS_MAX_SCENES ({settings.analysis_max_scenes})"
        )
    retry_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay_seconds=settings.retry_base_delay_seconds,
        max_jitter_seconds=settings.retry_max_jitter_seconds,
    )
    store = StorySessionStore()
    analyzer = StoryAnalyzer(
        gemini,
        retry_policy=retry_policy,
        min_scenes=settings.analysis_min_scenes,
        max_scenes=settings.analysis_max_scenes,
        sleep=sleep,
    )
    orchestrator = SceneOrchestrator(
        ImageGenerator(gemini, translate_prompts=settings.translate_image_prompts),
        store,
        retry_policy=retry_policy,
        inter_scene_delay_seconds=settings.inter_scene_delay_seconds,
        concurrency=settings.generation_concurrency,
        sleep=sleep,
    )
    return StorybookServices(store=store, analyzer=analyzer, orchestrator=orchestrator)


def get_services(request: Request) -> StorybookServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("storybook services are not initialized")
    return services


ServicesDep = Depends(get_services)
