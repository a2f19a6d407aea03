import uuid

from pydantic import BaseModel, Field

from storybook.services.sessions import Scene, SceneStatus, StoryPhase, StoryState


class StoryAnalyzeRequest(BaseModel):
    story_text: str


class SceneRead(BaseModel):
    scene_id: str
    page_number: int
    story_text: str
    image_prompt: str
    status: SceneStatus
    image_url: str | None = None
    is_generating: bool = False
    error: str | None = None

    @classmethod
    def from_scene(cls, scene: Scene, page_number: int) -> "SceneRead":
        return cls(
            scene_id=scene.scene_id,
            page_number=page_number,
            story_text=scene.story_text,
            image_prompt=scene.image_prompt,
            status=scene.state.status,
            image_url=scene.image_url,
            is_generating=scene.is_generating,
            error=scene.state.error,
        )


class StoryRead(BaseModel):
    story_id: str
    title: str
    moral: str
    phase: StoryPhase
    is_processing: bool
    is_editing: bool
    scenes: list[SceneRead]
    updated_at: str

    @classmethod
    def from_story(cls, story: StoryState) -> "StoryRead":
        return cls(
            story_id=story.story_id,
            title=story.title,
            moral=story.moral,
            phase=story.phase,
            is_processing=story.is_processing,
            is_editing=story.is_editing,
            scenes=[SceneRead.from_scene(scene, index) for index, scene in enumerate(story.scenes, start=1)],
            updated_at=story.updated_at.isoformat(),
        )


class SceneUpdate(BaseModel):
    story_text: str | None = Field(default=None, min_length=1)
    image_prompt: str | None = Field(default=None, min_length=1)


class SceneInsert(BaseModel):
    after_index: int | None = Field(default=None, ge=-1, description="Insert after this 0-based index; -1 for the front")
    story_text: str | None = None
    image_prompt: str | None = None


class JobStatusRead(BaseModel):
    job_id: uuid.UUID
    job_type: str
    status: str
    created_at: str
    updated_at: str
    progress: dict | None = None
    result: dict | None = None
    error: str | None = None
