import uuid

import anyio
import pytest

from storybook.services import job_queue


def test_enqueue_requires_running_worker():
    with pytest.raises(RuntimeError):
        job_queue.enqueue_job("noop", {}, lambda job: None)


def test_progress_for_unknown_job_is_ignored():
    job_queue.update_job_progress(uuid.uuid4(), {"ready": 1})


async def _wait(job_id):
    for _ in range(200):
        job = job_queue.get_job(job_id)
        if job.status in ("succeeded", "failed"):
            return job
        await anyio.sleep(0.01)
    raise AssertionError("job did not finish")


@pytest.mark.anyio
async def test_worker_runs_handler_and_stores_result():
    await job_queue.start_worker()
    try:
        def handler(job):
            job_queue.update_job_progress(job.job_id, {"step": 1})
            return {"echo": job.payload["value"]}

        job = job_queue.enqueue_job("echo", {"value": 42}, handler, request_id="req-1")
        assert job.status == "queued"

        finished = await _wait(job.job_id)
        assert finished.status == "succeeded"
        assert finished.result == {"echo": 42}
        assert finished.progress == {"step": 1}
        assert finished.request_id == "req-1"
    finally:
        await job_queue.stop_worker()


@pytest.mark.anyio
async def test_worker_records_handler_failure():
    await job_queue.start_worker()
    try:
        def handler(job):
            raise ValueError("scene list changed")

        job = job_queue.enqueue_job("boom", {}, handler)
        finished = await _wait(job.job_id)
        assert finished.status == "failed"
        assert finished.error == "scene list changed"
    finally:
        await job_queue.stop_worker()
