from __future__ import annotations

from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

JSON_PARSE_FAILURES = Counter(
    "storybook_json_parse_failures_total",
    "Number of times parsing JSON from Gemini failed, labeled by the extraction tier.",
    ["tier"],
    registry=registry,
)

GEMINI_CALL_DURATION = Histogram(
    "storybook_gemini_call_duration_seconds",
    "Latency for Gemini API calls per operation.",
    ["operation"],
    registry=registry,
)

GEMINI_CALLS_TOTAL = Counter(
    "storybook_gemini_calls_total",
    "Total Gemini API calls partitioned by operation and status.",
    ["operation", "status"],
    registry=registry,
)

RATE_LIMIT_RETRIES_TOTAL = Counter(
    "storybook_rate_limit_retries_total",
    "Delayed retries performed after a rate-limit error.",
    registry=registry,
)

SCENE_GENERATIONS_TOTAL = Counter(
    "storybook_scene_generations_total",
    "Scene image generation outcomes.",
    ["status"],
    registry=registry,
)


@contextmanager
def track_gemini_call(operation: str):
    timer = GEMINI_CALL_DURATION.labels(operation=operation).time()
    timer.__enter__()
    try:
        yield
        GEMINI_CALLS_TOTAL.labels(operation=operation, status="success").inc()
    except Exception:
        GEMINI_CALLS_TOTAL.labels(operation=operation, status="error").inc()
        raise
    finally:
        timer.__exit__(None, None, None)


def increment_json_parse_failure(tier: str) -> None:
    JSON_PARSE_FAILURES.labels(tier=tier).inc()


def record_rate_limit_retry() -> None:
    RATE_LIMIT_RETRIES_TOTAL.inc()


def record_scene_generation(status: str) -> None:
    SCENE_GENERATIONS_TOTAL.labels(status=status).inc()


def get_metrics_payload() -> bytes:
    return generate_latest(registry)
