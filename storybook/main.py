from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from storybook.api.deps import build_services
from storybook.api.v1.router import api_router
from storybook.core.exceptions import (
    AnalysisError,
    AnalysisRateLimitedError,
    AppError,
    InvalidStateError,
    SceneNotFoundError,
    StoryNotFoundError,
)
from storybook.core.gemini_factory import build_gemini_client
from storybook.core.logging import configure_logging
from storybook.core.metrics import get_metrics_payload
from storybook.core.request_context import reset_request_id, set_request_id
from storybook.core.settings import settings
from storybook.services import job_queue
from storybook.services.gemini import GeminiError


logger = logging.getLogger("storybook")


def _is_polling_request(method: str, path: str) -> bool:
    if method != "GET":
        return False
    if path.startswith("/v1/jobs/"):
        return True
    if path.startswith("/v1/stories/") and path.count("/") == 3:
        return True
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)

    # Fails fast when GEMINI_API_KEY is missing.
    app.state.services = build_services(build_gemini_client())

    await job_queue.start_worker()
    try:
        yield
    finally:
        await job_queue.stop_worker()


app = FastAPI(title="Storybook Studio", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = set_request_id(request_id)
    start = time.perf_counter()
    try:
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        request_logger = logger.debug if _is_polling_request(request.method, request.url.path) else logger.info
        request_logger(
            "request_complete",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers["x-request-id"] = request_id
        return response
    finally:
        reset_request_id(token)


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "request_id": request_id},
    )


@app.exception_handler(StoryNotFoundError)
async def story_not_found_handler(request: Request, exc: StoryNotFoundError):
    return _error_response(request, 404, exc.detail)


@app.exception_handler(SceneNotFoundError)
async def scene_not_found_handler(request: Request, exc: SceneNotFoundError):
    return _error_response(request, 404, exc.detail)


@app.exception_handler(InvalidStateError)
async def invalid_state_handler(request: Request, exc: InvalidStateError):
    return _error_response(request, 409, exc.detail)


@app.exception_handler(AnalysisRateLimitedError)
async def analysis_rate_limited_handler(request: Request, exc: AnalysisRateLimitedError):
    return _error_response(request, 429, exc.detail)


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request: Request, exc: AnalysisError):
    return _error_response(request, 502, exc.detail)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return _error_response(request, 500, exc.detail)


@app.exception_handler(GeminiError)
async def gemini_error_handler(request: Request, exc: GeminiError):
    return _error_response(request, 502, str(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error_response(request, 400, str(exc))


@app.exception_handler(RuntimeError)
async def runtime_error_handler(request: Request, exc: RuntimeError):
    return _error_response(request, 502, str(exc))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics_endpoint():
    return PlainTextResponse(get_metrics_payload(), media_type="text/plain; version=0.0.4; charset=utf-8")


app.include_router(api_router)
