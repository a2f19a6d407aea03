"""Tests for story sessions, the phase machine and scene invalidation."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from storybook.core.exceptions import InvalidStateError, SceneNotFoundError, StoryNotFoundError
from storybook.services.sessions import (
    NEW_SCENE_IMAGE_PROMPT,
    NEW_SCENE_STORY_TEXT,
    Scene,
    SceneState,
    SceneStatus,
    StoryPhase,
    StorySessionStore,
    StoryState,
)
from storybook.services.story_analyzer import StoryAnalysis

IMAGE = "data:image/png;base64,AAAA"


@pytest.fixture()
def store():
    return StorySessionStore()


@pytest.fixture()
def story(store, sample_analysis):
    started = store.start_analysis()
    return store.complete_analysis(started.story_id, StoryAnalysis.model_validate(sample_analysis))


class TestSceneEdit:
    def test_story_text_edit_keeps_image(self):
        scene = Scene(scene_id="s1", image_prompt="a fox", story_text="old", state=SceneState.ready(IMAGE))
        assert scene.edit(story_text="new") is False
        assert scene.story_text == "new"
        assert scene.image_url == IMAGE

    @given(old=st.text(min_size=1), new=st.text(min_size=1))
    def test_image_survives_only_identical_prompt(self, old, new):
        scene = Scene(scene_id="s1", image_prompt=old, story_text="t", state=SceneState.ready(IMAGE))

        invalidated = scene.edit(image_prompt=new)

        assert invalidated is (old != new)
        assert (scene.image_url is not None) is (old == new)
        assert scene.image_prompt == new

    def test_image_url_only_when_ready(self):
        assert Scene("s", "p", "t", SceneState.failed("blocked")).image_url is None
        assert Scene("s", "p", "t", SceneState.generating()).is_generating


class TestPhaseMachine:
    def test_happy_path(self):
        story = StoryState(story_id="s")
        for phase in (StoryPhase.ANALYZING, StoryPhase.EDITING, StoryPhase.GENERATING, StoryPhase.VIEWING):
            story.transition(phase)
        assert story.phase is StoryPhase.VIEWING
        story.transition(StoryPhase.EDITING)
        assert story.is_editing

    @pytest.mark.parametrize(
        "start, target",
        [
            (StoryPhase.EMPTY_INPUT, StoryPhase.EDITING),
            (StoryPhase.ANALYZING, StoryPhase.GENERATING),
            (StoryPhase.EDITING, StoryPhase.VIEWING),
            (StoryPhase.GENERATING, StoryPhase.EDITING),
        ],
    )
    def test_rejects_illegal_transitions(self, start, target):
        story = StoryState(story_id="s", phase=start)
        with pytest.raises(InvalidStateError):
            story.transition(target)
        assert story.phase is start


class TestLifecycle:
    def test_analysis_populates_editing_story(self, story):
        assert story.phase is StoryPhase.EDITING
        assert story.title == "The Three Little Pigs"
        assert len(story.scenes) == 3
        assert all(scene.state.status is SceneStatus.PENDING for scene in story.scenes)
        assert len({scene.scene_id for scene in story.scenes}) == 3

    def test_failed_analysis_discards_story(self, store):
        started = store.start_analysis()
        assert started.phase is StoryPhase.ANALYZING
        store.fail_analysis(started.story_id)
        with pytest.raises(StoryNotFoundError):
            store.get(started.story_id)

    def test_get_returns_snapshot(self, store, story):
        snapshot = store.get(story.story_id)
        snapshot.scenes.clear()
        assert len(store.get(story.story_id).scenes) == 3

    def test_discard(self, store, story):
        store.discard(story.story_id)
        with pytest.raises(StoryNotFoundError):
            store.get(story.story_id)
        with pytest.raises(StoryNotFoundError):
            store.discard(story.story_id)

    def test_return_to_editing_requires_viewing(self, store, story):
        with pytest.raises(InvalidStateError):
            store.return_to_editing(story.story_id)
        store.begin_batch(story.story_id)
        store.finish_batch(story.story_id)
        assert store.return_to_editing(story.story_id).phase is StoryPhase.EDITING


class TestEdits:
    def test_update_prompt_invalidates_ready_scene(self, store, story):
        scene_id = story.scenes[0].scene_id
        store.mark_generating(story.story_id, scene_id)
        store.complete_scene(story.story_id, scene_id, story.scenes[0].image_prompt, IMAGE)

        same = store.update_scene(story.story_id, scene_id, image_prompt=story.scenes[0].image_prompt)
        assert same.image_url == IMAGE

        changed = store.update_scene(story.story_id, scene_id, image_prompt="a wolf at the door")
        assert changed.image_url is None
        assert changed.state.status is SceneStatus.PENDING

    def test_insert_appends_by_default(self, store, story):
        scene = store.insert_scene(story.story_id)
        scenes = store.get(story.story_id).scenes
        assert scenes[-1].scene_id == scene.scene_id
        assert scene.story_text == NEW_SCENE_STORY_TEXT
        assert scene.image_prompt == NEW_SCENE_IMAGE_PROMPT
        assert scene.state.status is SceneStatus.PENDING

    def test_insert_at_front_and_middle(self, store, story):
        front = store.insert_scene(story.story_id, after_index=-1, story_text="Prologue")
        middle = store.insert_scene(story.story_id, after_index=1, image_prompt="a bridge")
        ids = [scene.scene_id for scene in store.get(story.story_id).scenes]
        assert ids[0] == front.scene_id
        assert ids[2] == middle.scene_id
        assert len(ids) == 5

    @pytest.mark.parametrize("after_index", [3, 10, -2])
    def test_insert_out_of_range(self, store, story, after_index):
        with pytest.raises(ValueError):
            store.insert_scene(story.story_id, after_index=after_index)

    def test_remove_scene(self, store, story):
        removed = story.scenes[1].scene_id
        store.remove_scene(story.story_id, removed)
        ids = [scene.scene_id for scene in store.get(story.story_id).scenes]
        assert removed not in ids
        assert len(ids) == 2
        with pytest.raises(SceneNotFoundError):
            store.remove_scene(story.story_id, removed)

    def test_edits_rejected_during_generation(self, store, story):
        store.begin_batch(story.story_id)
        scene_id = story.scenes[0].scene_id
        with pytest.raises(InvalidStateError):
            store.update_scene(story.story_id, scene_id, story_text="x")
        with pytest.raises(InvalidStateError):
            store.insert_scene(story.story_id)
        with pytest.raises(InvalidStateError):
            store.remove_scene(story.story_id, scene_id)
        with pytest.raises(InvalidStateError):
            store.begin_regenerate(story.story_id, scene_id)

    def test_edits_allowed_while_viewing(self, store, story):
        store.begin_batch(story.story_id)
        store.finish_batch(story.story_id)
        store.update_scene(story.story_id, story.scenes[0].scene_id, story_text="Edited")
        assert store.get(story.story_id).scenes[0].story_text == "Edited"


class TestGenerationBookkeeping:
    def test_begin_batch_marks_processing(self, store, story):
        started = store.begin_batch(story.story_id)
        assert started.phase is StoryPhase.GENERATING
        assert started.is_processing
        with pytest.raises(InvalidStateError):
            store.begin_batch(story.story_id)

    def test_finish_batch_moves_to_viewing(self, store, story):
        store.begin_batch(story.story_id)
        store.finish_batch(story.story_id)
        finished = store.get(story.story_id)
        assert finished.phase is StoryPhase.VIEWING
        assert not finished.is_processing

    def test_finish_batch_tolerates_discarded_story(self, store, story):
        store.begin_batch(story.story_id)
        store.discard(story.story_id)
        store.finish_batch(story.story_id)

    def test_begin_batch_rejected_while_scene_regenerates(self, store, story):
        store.begin_regenerate(story.story_id, story.scenes[0].scene_id)
        with pytest.raises(InvalidStateError):
            store.begin_batch(story.story_id)

    def test_begin_regenerate_marks_generating_and_returns_prompt(self, store, story):
        scene = story.scenes[0]
        prompt = store.begin_regenerate(story.story_id, scene.scene_id)
        assert prompt == scene.image_prompt
        assert store.get(story.story_id).scenes[0].is_generating
        with pytest.raises(InvalidStateError):
            store.begin_regenerate(story.story_id, scene.scene_id)

    def test_result_for_stale_prompt_is_dropped(self, store, story):
        scene = story.scenes[0]
        prompt = store.begin_regenerate(story.story_id, scene.scene_id)
        store.update_scene(story.story_id, scene.scene_id, image_prompt="a completely different picture")

        state = store.complete_scene(story.story_id, scene.scene_id, prompt, IMAGE)

        assert state.status is SceneStatus.PENDING
        assert store.get(story.story_id).scenes[0].image_url is None

    def test_failure_is_recorded_on_scene(self, store, story):
        scene = story.scenes[0]
        prompt = store.mark_generating(story.story_id, scene.scene_id)
        state = store.fail_scene(story.story_id, scene.scene_id, prompt, "blocked by safety review")
        assert state.status is SceneStatus.FAILED
        assert state.error == "blocked by safety review"

    def test_result_for_removed_scene_is_dropped(self, store, story):
        scene = story.scenes[0]
        prompt = store.mark_generating(story.story_id, scene.scene_id)
        store.remove_scene(story.story_id, scene.scene_id)
        assert store.complete_scene(story.story_id, scene.scene_id, prompt, IMAGE) is None

    def test_result_for_discarded_story_is_dropped(self, store, story):
        scene = story.scenes[0]
        prompt = store.mark_generating(story.story_id, scene.scene_id)
        store.discard(story.story_id)
        assert store.complete_scene(story.story_id, scene.scene_id, prompt, IMAGE) is None
