import uuid

from fastapi import APIRouter, HTTPException

from storybook.api.v1.schemas import JobStatusRead
from storybook.services import job_queue


router = APIRouter(tags=["jobs"])


def job_read(job: job_queue.JobRecord) -> JobStatusRead:
    return JobStatusRead(
        job_id=job.job_id,
        job_type=job.job_type,
        status=job.status,
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
        progress=job.progress,
        result=job.result,
        error=job.error,
    )


@router.get("/jobs/{job_id}", response_model=JobStatusRead)
def get_job(job_id: uuid.UUID):
    job = job_queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    return job_read(job)
