from fastapi import APIRouter

from storybook.api.v1 import jobs, stories


api_router = APIRouter(prefix="/v1")

api_router.include_router(stories.router)
api_router.include_router(jobs.router)
