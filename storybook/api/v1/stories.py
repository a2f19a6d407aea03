import logging

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import HTMLResponse

from storybook.api.deps import ServicesDep, StorybookServices
from storybook.api.v1.jobs import job_read
from storybook.api.v1.schemas import (
    JobStatusRead,
    SceneInsert,
    SceneRead,
    SceneUpdate,
    StoryAnalyzeRequest,
    StoryRead,
)
from storybook.core.request_context import log_context, reset_request_id, set_request_id
from storybook.core.settings import settings
from storybook.services import job_queue
from storybook.services.print_export import (
    PaperSize,
    PrintLayout,
    decode_data_uri,
    download_filename,
    render_print_html,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stories"])

JOB_BATCH = "storybook_batch"
JOB_REGENERATE = "scene_regenerate"


def _scene_read(services: StorybookServices, story_id: str, scene_id: str) -> SceneRead:
    story = services.store.get(story_id)
    for index, scene in enumerate(story.scenes, start=1):
        if scene.scene_id == scene_id:
            return SceneRead.from_scene(scene, index)
    raise HTTPException(status_code=404, detail="scene not found")


def _handle_batch_job(services: StorybookServices, job: job_queue.JobRecord) -> dict | None:
    story_id = job.payload["story_id"]
    token = set_request_id(job.request_id or str(job.job_id))
    try:
        with log_context(story_id=story_id, job_id=job.job_id):
            summary = services.orchestrator.generate_all(
                story_id,
                on_progress=lambda progress: job_queue.update_job_progress(job.job_id, progress),
            )
            return summary.as_dict()
    finally:
        reset_request_id(token)


def _handle_regenerate_job(services: StorybookServices, job: job_queue.JobRecord) -> dict | None:
    story_id = job.payload["story_id"]
    scene_id = job.payload["scene_id"]
    token = set_request_id(job.request_id or str(job.job_id))
    try:
        with log_context(story_id=story_id, scene_id=scene_id, job_id=job.job_id):
            state = services.orchestrator.draw_marked_scene(story_id, scene_id, job.payload["image_prompt"])
            return {
                "story_id": story_id,
                "scene_id": scene_id,
                "status": state.status.value if state is not None else None,
                "error": state.error if state is not None else None,
            }
    finally:
        reset_request_id(token)


@router.post("/stories/analyze", response_model=StoryRead)
def analyze_story(payload: StoryAnalyzeRequest, services=ServicesDep):
    story = services.store.start_analysis()
    with log_context(story_id=story.story_id):
        try:
            analysis = services.analyzer.analyze(payload.story_text)
        except Exception:
            services.store.fail_analysis(story.story_id)
            raise
        story = services.store.complete_analysis(story.story_id, analysis)
    return StoryRead.from_story(story)


@router.get("/stories/{story_id}", response_model=StoryRead)
def get_story(story_id: str, services=ServicesDep):
    return StoryRead.from_story(services.store.get(story_id))


@router.delete("/stories/{story_id}", status_code=204)
def discard_story(story_id: str, services=ServicesDep):
    with log_context(story_id=story_id):
        services.store.discard(story_id)
    return Response(status_code=204)


@router.post("/stories/{story_id}/scenes", response_model=SceneRead, status_code=201)
def insert_scene(story_id: str, payload: SceneInsert, services=ServicesDep):
    scene = services.store.insert_scene(
        story_id,
        after_index=payload.after_index,
        story_text=payload.story_text,
        image_prompt=payload.image_prompt,
    )
    return _scene_read(services, story_id, scene.scene_id)


@router.patch("/stories/{story_id}/scenes/{scene_id}", response_model=SceneRead)
def update_scene(story_id: str, scene_id: str, payload: SceneUpdate, services=ServicesDep):
    with log_context(story_id=story_id, scene_id=scene_id):
        services.store.update_scene(
            story_id,
            scene_id,
            story_text=payload.story_text,
            image_prompt=payload.image_prompt,
        )
    return _scene_read(services, story_id, scene_id)


@router.delete("/stories/{story_id}/scenes/{scene_id}", status_code=204)
def remove_scene(story_id: str, scene_id: str, services=ServicesDep):
    services.store.remove_scene(story_id, scene_id)
    return Response(status_code=204)


@router.post("/stories/{story_id}/edit", response_model=StoryRead)
def return_to_editing(story_id: str, services=ServicesDep):
    return StoryRead.from_story(services.store.return_to_editing(story_id))


@router.post("/stories/{story_id}/generate", response_model=JobStatusRead, status_code=202)
def generate_story_images(story_id: str, request: Request, services=ServicesDep):
    services.store.begin_batch(story_id)
    try:
        job = job_queue.enqueue_job(
            JOB_BATCH,
            {"story_id": story_id},
            lambda job: _handle_batch_job(services, job),
            request_id=getattr(request.state, "request_id", None),
        )
    except Exception:
        services.store.finish_batch(story_id)
        raise
    logger.info("batch generation queued story_id=%s job_id=%s", story_id, job.job_id)
    return job_read(job)


@router.post(
    "/stories/{story_id}/scenes/{scene_id}/regenerate",
    response_model=JobStatusRead,
    status_code=202,
)
def regenerate_scene(story_id: str, scene_id: str, request: Request, services=ServicesDep):
    prompt = services.store.begin_regenerate(story_id, scene_id)
    try:
        job = job_queue.enqueue_job(
            JOB_REGENERATE,
            {"story_id": story_id, "scene_id": scene_id, "image_prompt": prompt},
            lambda job: _handle_regenerate_job(services, job),
            request_id=getattr(request.state, "request_id", None),
        )
    except Exception as exc:
        services.store.fail_scene(story_id, scene_id, prompt, f"could not schedule generation: {exc}")
        raise
    return job_read(job)


@router.get("/stories/{story_id}/scenes/{scene_id}/image")
def download_scene_image(story_id: str, scene_id: str, services=ServicesDep):
    scene = _scene_read(services, story_id, scene_id)
    if not scene.image_url:
        raise HTTPException(status_code=404, detail="scene has no image yet")
    image_bytes, mime_type = decode_data_uri(scene.image_url)
    return Response(
        content=image_bytes,
        media_type=mime_type,
        headers={"Content-Disposition": f'attachment; filename="{download_filename(scene_id)}"'},
    )


@router.get("/stories/{story_id}/print", response_class=HTMLResponse)
def print_story(
    story_id: str,
    paper_size: PaperSize = PaperSize.A4,
    layout: PrintLayout = PrintLayout.ONE_PER_PAGE,
    services=ServicesDep,
):
    story = services.store.get(story_id)
    html = render_print_html(
        story,
        paper_size=paper_size,
        layout=layout,
        print_delay_ms=settings.print_delay_ms,
    )
    return HTMLResponse(content=html)
