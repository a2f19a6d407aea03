import contextvars
from contextlib import contextmanager
import uuid

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
story_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("story_id", default=None)
scene_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("scene_id", default=None)
job_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("job_id", default=None)


def set_request_id(request_id: str) -> contextvars.Token:
    """Store the current request ID in a context variable."""
    return request_id_var.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    """Reset the request ID context variable to a previous state."""
    request_id_var.reset(token)


def get_request_id() -> str | None:
    """Retrieve the current request ID from the context."""
    return request_id_var.get()


def _normalize_id(value: uuid.UUID | str | None) -> str | None:
    if value is None:
        return None
    return str(value)


def get_story_id() -> str | None:
    return story_id_var.get()


def get_scene_id() -> str | None:
    return scene_id_var.get()


def get_job_id() -> str | None:
    return job_id_var.get()


@contextmanager
def log_context(
    story_id: uuid.UUID | str | None = None,
    scene_id: uuid.UUID | str | None = None,
    job_id: uuid.UUID | str | None = None,
):
    """Temporarily scope story/scene/job context for structured logs."""
    tokens: list[tuple[contextvars.ContextVar[str | None], contextvars.Token]] = []
    if story_id is not None:
        tokens.append((story_id_var, story_id_var.set(_normalize_id(story_id))))
    if scene_id is not None:
        tokens.append((scene_id_var, scene_id_var.set(_normalize_id(scene_id))))
    if job_id is not None:
        tokens.append((job_id_var, job_id_var.set(_normalize_id(job_id))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
