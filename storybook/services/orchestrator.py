"""
Scene orchestration: batch and single-scene image generation.

Batch generation drains a task queue of every scene without an image, in
page order. ``concurrency`` sets how many workers drain the queue; the default
of 1 serializes requests to stay under the image API's rate limits, and with
one worker scenes are drawn strictly in order. A scene failure is recorded on
that scene and the batch moves on.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from storybook.core.exceptions import InvalidStateError, SceneNotFoundError, StoryNotFoundError
from storybook.core.metrics import record_scene_generation
from storybook.core.request_context import log_context
from storybook.services.retry import RetryPolicy, with_retry
from storybook.services.sessions import SceneState, SceneStatus, StoryPhase

if TYPE_CHECKING:
    from storybook.services.image_generator import ImageGenerator
    from storybook.services.sessions import StorySessionStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict], None]


@dataclass
class BatchSummary:
    story_id: str
    total: int = 0
    ready: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return {
            "story_id": self.story_id,
            "total": self.total,
            "ready": self.ready,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class SceneOrchestrator:
    def __init__(
        self,
        generator: "ImageGenerator",
        store: "StorySessionStore",
        *,
        retry_policy: RetryPolicy | None = None,
        inter_scene_delay_seconds: float = 1.0,
        concurrency: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._generator = generator
        self._store = store
        self._retry_policy = retry_policy or RetryPolicy()
        self._inter_scene_delay_seconds = inter_scene_delay_seconds
        self._concurrency = concurrency
        self._sleep = sleep

    def _draw(self, story_id: str, scene_id: str, prompt: str) -> SceneState | None:
        """Generate one image and settle the scene. Failures are recorded, never raised."""
        try:
            image_url = with_retry(
                lambda: self._generator.generate(prompt),
                policy=self._retry_policy,
                sleep=self._sleep,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("scene generation failed: %r", exc)
            record_scene_generation("failed")
            return self._store.fail_scene(story_id, scene_id, prompt, str(exc) or type(exc).__name__)

        record_scene_generation("ready")
        return self._store.complete_scene(story_id, scene_id, prompt, image_url)

    def _run_scene(self, story_id: str, scene_id: str) -> SceneState | None:
        with log_context(story_id=story_id, scene_id=scene_id):
            try:
                prompt = self._store.mark_generating(story_id, scene_id)
            except (StoryNotFoundError, SceneNotFoundError):
                logger.info("scene no longer exists; skipped")
                return None
            return self._draw(story_id, scene_id, prompt)

    def _drain(
        self,
        story_id: str,
        tasks: deque[str],
        summary: BatchSummary,
        lock: threading.Lock,
        on_progress: ProgressCallback | None,
    ) -> None:
        first = True
        while True:
            with lock:
                if not tasks:
                    return
                scene_id = tasks.popleft()
            if not first and self._inter_scene_delay_seconds > 0:
                self._sleep(self._inter_scene_delay_seconds)
            first = False

            state = self._run_scene(story_id, scene_id)
            with lock:
                if state is None:
                    summary.skipped += 1
                elif state.status is SceneStatus.READY:
                    summary.ready += 1
                else:
                    summary.failed += 1
                if on_progress is not None:
                    on_progress(summary.as_dict())

    def generate_all(self, story_id: str, on_progress: ProgressCallback | None = None) -> BatchSummary:
        """Draw every scene that has no image yet.

        The story must already be in the ``generating`` phase (see
        ``StorySessionStore.begin_batch``). ``is_processing`` is cleared when
        the queue drains, whatever the per-scene outcomes.
        """
        story = self._store.get(story_id)
        if story.phase is not StoryPhase.GENERATING:
            raise InvalidStateError(
                f"story {story_id} is {story.phase.value}, not generating",
                detail="start generation before running a batch",
            )

        summary = BatchSummary(story_id=story_id, total=len(story.scenes))
        tasks: deque[str] = deque()
        for scene in story.scenes:
            if scene.state.status is SceneStatus.READY:
                summary.skipped += 1
            else:
                tasks.append(scene.scene_id)

        logger.info(
            "batch generation started story_id=%s queued=%s skipped=%s concurrency=%s",
            story_id,
            len(tasks),
            summary.skipped,
            self._concurrency,
        )
        lock = threading.Lock()
        try:
            workers = min(self._concurrency, len(tasks))
            if workers <= 1:
                self._drain(story_id, tasks, summary, lock, on_progress)
            else:
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scene-worker") as pool:
                    futures = [
                        pool.submit(self._drain, story_id, tasks, summary, lock, on_progress)
                        for _ in range(workers)
                    ]
                    for future in futures:
                        future.result()
        finally:
            self._store.finish_batch(story_id)

        logger.info(
            "batch generation finished story_id=%s ready=%s failed=%s skipped=%s",
            story_id,
            summary.ready,
            summary.failed,
            summary.skipped,
        )
        return summary

    def regenerate_scene(self, story_id: str, scene_id: str) -> SceneState | None:
        """Redraw one scene on explicit user request.

        Returns the settled state, or None when the scene disappeared meanwhile.
        """
        prompt = self._store.begin_regenerate(story_id, scene_id)
        return self.draw_marked_scene(story_id, scene_id, prompt)

    def draw_marked_scene(self, story_id: str, scene_id: str, prompt: str) -> SceneState | None:
        """Finish a regeneration whose scene was already marked by ``begin_regenerate``."""
        with log_context(story_id=story_id, scene_id=scene_id):
            logger.info("scene regeneration started")
            return self._draw(story_id, scene_id, prompt)
