from fastapi import APIRouter

from pbn_builder.api.auth import router as auth_router
from pbn_builder.api.projects import router as projects_router
from pbn_builder.api.updates import router as updates_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(projects_router, tags=["projects"])
api_router.include_router(updates_router, tags=["updates"])
