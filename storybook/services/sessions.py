"""
In-memory story sessions and the phase machine that drives them.

A story moves through ``empty_input -> analyzing -> editing -> generating ->
viewing``; users can return from ``viewing`` to ``editing`` or run another
batch. Every mutation happens under one lock and callers only ever receive
deep copies, so readers never observe a half-applied update.

Scene state is an explicit tagged value (pending, generating, ready, failed).
An image belongs to the exact prompt text it was generated from: changing a
scene's prompt to a different string drops the image, and a generation result
that arrives for a prompt which has since changed is discarded.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from storybook.core.exceptions import InvalidStateError, SceneNotFoundError, StoryNotFoundError

if TYPE_CHECKING:
    from storybook.services.story_analyzer import StoryAnalysis

logger = logging.getLogger(__name__)

NEW_SCENE_STORY_TEXT = "New scene narration..."
NEW_SCENE_IMAGE_PROMPT = "Describe the picture for this page..."


class SceneStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class SceneState:
    status: SceneStatus
    image_url: str | None = None
    error: str | None = None

    @classmethod
    def pending(cls) -> "SceneState":
        return cls(SceneStatus.PENDING)

    @classmethod
    def generating(cls) -> "SceneState":
        return cls(SceneStatus.GENERATING)

    @classmethod
    def ready(cls, image_url: str) -> "SceneState":
        return cls(SceneStatus.READY, image_url=image_url)

    @classmethod
    def failed(cls, reason: str) -> "SceneState":
        return cls(SceneStatus.FAILED, error=reason)


@dataclass
class Scene:
    scene_id: str
    image_prompt: str
    story_text: str
    state: SceneState = field(default_factory=SceneState.pending)

    @property
    def image_url(self) -> str | None:
        return self.state.image_url if self.state.status is SceneStatus.READY else None

    @property
    def is_generating(self) -> bool:
        return self.state.status is SceneStatus.GENERATING

    def edit(self, *, story_text: str | None = None, image_prompt: str | None = None) -> bool:
        """Apply user edits. Returns True when the prompt change invalidated the image."""
        if story_text is not None:
            self.story_text = story_text
        if image_prompt is None or image_prompt == self.image_prompt:
            return False
        self.image_prompt = image_prompt
        self.state = SceneState.pending()
        return True


class StoryPhase(str, Enum):
    EMPTY_INPUT = "empty_input"
    ANALYZING = "analyzing"
    EDITING = "editing"
    GENERATING = "generating"
    VIEWING = "viewing"


_TRANSITIONS: dict[StoryPhase, frozenset[StoryPhase]] = {
    StoryPhase.EMPTY_INPUT: frozenset({StoryPhase.ANALYZING}),
    StoryPhase.ANALYZING: frozenset({StoryPhase.EDITING, StoryPhase.EMPTY_INPUT}),
    StoryPhase.EDITING: frozenset({StoryPhase.GENERATING}),
    StoryPhase.GENERATING: frozenset({StoryPhase.VIEWING}),
    StoryPhase.VIEWING: frozenset({StoryPhase.EDITING, StoryPhase.GENERATING}),
}

_EDITABLE_PHASES = frozenset({StoryPhase.EDITING, StoryPhase.VIEWING})


def new_scene_id() -> str:
    return f"scene-{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoryState:
    story_id: str
    title: str = ""
    moral: str = ""
    scenes: list[Scene] = field(default_factory=list)
    phase: StoryPhase = StoryPhase.EMPTY_INPUT
    is_processing: bool = False
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_editing(self) -> bool:
        return self.phase is StoryPhase.EDITING

    def transition(self, target: StoryPhase) -> None:
        if target not in _TRANSITIONS[self.phase]:
            raise InvalidStateError(
                f"cannot move story {self.story_id} from {self.phase.value} to {target.value}",
                detail=f"story is {self.phase.value}; cannot switch to {target.value}",
            )
        logger.info("story phase %s -> %s", self.phase.value, target.value)
        self.phase = target

    def find_scene(self, scene_id: str) -> Scene:
        for scene in self.scenes:
            if scene.scene_id == scene_id:
                return scene
        raise SceneNotFoundError(scene_id)


class StorySessionStore:
    """Thread-safe registry of live story sessions. Nothing is persisted."""

    def __init__(self) -> None:
        self._stories: dict[str, StoryState] = {}
        self._lock = threading.Lock()

    def _get(self, story_id: str) -> StoryState:
        story = self._stories.get(story_id)
        if story is None:
            raise StoryNotFoundError(story_id)
        return story

    def _touch(self, story: StoryState) -> StoryState:
        story.updated_at = _utcnow()
        return copy.deepcopy(story)

    @staticmethod
    def _require_editable(story: StoryState) -> None:
        if story.is_processing or story.phase not in _EDITABLE_PHASES:
            raise InvalidStateError(
                f"story {story.story_id} cannot be edited while {story.phase.value}",
                detail="scenes can only be changed while editing or viewing, not during generation",
            )

    # -- lifecycle -----------------------------------------------------------

    def start_analysis(self) -> StoryState:
        story = StoryState(story_id=str(uuid.uuid4()))
        story.transition(StoryPhase.ANALYZING)
        with self._lock:
            self._stories[story.story_id] = story
            return self._touch(story)

    def complete_analysis(self, story_id: str, analysis: "StoryAnalysis") -> StoryState:
        with self._lock:
            story = self._get(story_id)
            story.transition(StoryPhase.EDITING)
            story.title = analysis.title
            story.moral = analysis.moral
            story.scenes = [
                Scene(
                    scene_id=new_scene_id(),
                    image_prompt=item.image_prompt,
                    story_text=item.story_text,
                )
                for item in analysis.scenes
            ]
            return self._touch(story)

    def fail_analysis(self, story_id: str) -> None:
        with self._lock:
            story = self._stories.pop(story_id, None)
            if story is not None:
                story.transition(StoryPhase.EMPTY_INPUT)

    def get(self, story_id: str) -> StoryState:
        with self._lock:
            return copy.deepcopy(self._get(story_id))

    def discard(self, story_id: str) -> None:
        with self._lock:
            self._get(story_id)
            del self._stories[story_id]
        logger.info("story discarded")

    def return_to_editing(self, story_id: str) -> StoryState:
        with self._lock:
            story = self._get(story_id)
            story.transition(StoryPhase.EDITING)
            return self._touch(story)

    # -- edits ---------------------------------------------------------------

    def update_scene(
        self,
        story_id: str,
        scene_id: str,
        *,
        story_text: str | None = None,
        image_prompt: str | None = None,
    ) -> Scene:
        with self._lock:
            story = self._get(story_id)
            self._require_editable(story)
            scene = story.find_scene(scene_id)
            if scene.edit(story_text=story_text, image_prompt=image_prompt):
                logger.info("scene prompt changed; image invalidated")
            self._touch(story)
            return copy.deepcopy(scene)

    def insert_scene(
        self,
        story_id: str,
        *,
        after_index: int | None = None,
        story_text: str | None = None,
        image_prompt: str | None = None,
    ) -> Scene:
        """Insert a scene after ``after_index`` (-1 for the front, None to append)."""
        with self._lock:
            story = self._get(story_id)
            self._require_editable(story)
            position = len(story.scenes) if after_index is None else after_index + 1
            if not 0 <= position <= len(story.scenes):
                raise ValueError(f"after_index {after_index} is out of range for {len(story.scenes)} scenes")
            scene = Scene(
                scene_id=new_scene_id(),
                image_prompt=image_prompt or NEW_SCENE_IMAGE_PROMPT,
                story_text=story_text or NEW_SCENE_STORY_TEXT,
            )
            story.scenes.insert(position, scene)
            self._touch(story)
            return copy.deepcopy(scene)

    def remove_scene(self, story_id: str, scene_id: str) -> None:
        with self._lock:
            story = self._get(story_id)
            self._require_editable(story)
            scene = story.find_scene(scene_id)
            story.scenes.remove(scene)
            self._touch(story)

    # -- generation ----------------------------------------------------------

    def begin_batch(self, story_id: str) -> StoryState:
        with self._lock:
            story = self._get(story_id)
            if story.is_processing:
                raise InvalidStateError(
                    f"story {story_id} already has a batch running",
                    detail="image generation is already running for this story",
                )
            if any(scene.is_generating for scene in story.scenes):
                raise InvalidStateError(
                    f"story {story_id} has a scene regenerating",
                    detail="wait for the scene that is regenerating to finish",
                )
            story.transition(StoryPhase.GENERATING)
            story.is_processing = True
            return self._touch(story)

    def finish_batch(self, story_id: str) -> None:
        with self._lock:
            story = self._stories.get(story_id)
            if story is None:
                return
            story.is_processing = False
            if story.phase is StoryPhase.GENERATING:
                story.transition(StoryPhase.VIEWING)
            self._touch(story)

    def begin_regenerate(self, story_id: str, scene_id: str) -> str:
        """Clear the scene's image, mark it generating, and return the prompt to draw."""
        with self._lock:
            story = self._get(story_id)
            self._require_editable(story)
            scene = story.find_scene(scene_id)
            if scene.is_generating:
                raise InvalidStateError(
                    f"scene {scene_id} is already generating",
                    detail="this scene is already being drawn",
                )
            scene.state = SceneState.generating()
            self._touch(story)
            return scene.image_prompt

    def mark_generating(self, story_id: str, scene_id: str) -> str:
        with self._lock:
            scene = self._get(story_id).find_scene(scene_id)
            scene.state = SceneState.generating()
            return scene.image_prompt

    def _settle_scene(self, story_id: str, scene_id: str, prompt: str, state: SceneState) -> SceneState | None:
        with self._lock:
            story = self._stories.get(story_id)
            if story is None:
                return None
            try:
                scene = story.find_scene(scene_id)
            except SceneNotFoundError:
                logger.info("scene removed while generating; result dropped")
                return None
            if scene.image_prompt != prompt:
                logger.info("scene prompt changed while generating; result dropped")
                scene.state = SceneState.pending()
            else:
                scene.state = state
            self._touch(story)
            return scene.state

    def complete_scene(self, story_id: str, scene_id: str, prompt: str, image_url: str) -> SceneState | None:
        return self._settle_scene(story_id, scene_id, prompt, SceneState.ready(image_url))

    def fail_scene(self, story_id: str, scene_id: str, prompt: str, reason: str) -> SceneState | None:
        return self._settle_scene(story_id, scene_id, prompt, SceneState.failed(reason))
