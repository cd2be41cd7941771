import csv
import io
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from pbn_builder.api.auth import get_current_user
from pbn_builder.config import settings
from pbn_builder.errors import DuplicateNameError, ProjectNotFoundError, ProjectRunningError
from pbn_builder.models.base import Message
from pbn_builder.models.project import (
    Project,
    ProjectCreate,
    ProjectCreated,
    ProjectUpdate,
    Summary,
)
from pbn_builder.services.summary import calculate_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", dependencies=[Depends(get_current_user)])

EXPORT_COLUMNS = ["project", "siteId", "status", "createdAt", "repoUrl", "vercelUrl", "owner"]


def _summary() -> Summary:
    from pbn_builder.main import get_state_db

    return calculate_summary(get_state_db().list_projects(), settings.openai_model)


@router.post("", response_model=ProjectCreated)
async def create_project(req: ProjectCreate):
    from pbn_builder.main import get_state_db, get_runner

    try:
        project_id = get_state_db().create_project(
            req.name, req.system_prompt, req.user_prompt, req.site_count, req.interval
        )
    except DuplicateNameError:
        raise HTTPException(400, "Project name already exists")
    logger.info("Created project %s (%s)", req.name, project_id)
    await get_runner().publisher.publish_summary(_summary())
    return ProjectCreated(project_id=project_id)


@router.get("", response_model=list[Project])
async def list_projects():
    from pbn_builder.main import get_state_db

    return [Project(**p) for p in get_state_db().list_projects()]


@router.get("/summary", response_model=Summary)
async def get_summary():
    return _summary()


@router.get("/export")
async def export_progress():
    """匯出所有網站進度為 CSV。"""
    from pbn_builder.main import get_state_db

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for project in get_state_db().list_projects():
        for entry in project["progress"]:
            writer.writerow([
                project["name"],
                entry["site_id"],
                entry["status"],
                entry["created_at"],
                entry["repo_url"],
                entry["vercel_url"],
                entry["owner"],
            ])
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="pbn-sites.csv"'},
    )


@router.put("/{project_id}", response_model=Message)
async def update_project(project_id: str, req: ProjectUpdate):
    from pbn_builder.main import get_state_db, get_runner

    state_db = get_state_db()
    project = state_db.get_project(project_id)
    if not project:
        raise HTTPException(404, "Project not found")
    if project["is_running"]:
        raise HTTPException(400, "Project is running, cannot update")
    try:
        state_db.update_project(
            project_id, req.name, req.system_prompt, req.user_prompt, req.site_count, req.interval
        )
    except DuplicateNameError:
        raise HTTPException(400, "Project name already exists")
    await get_runner().publisher.publish_summary(_summary())
    return Message(message="Project updated")


@router.delete("/{project_id}", response_model=Message)
async def delete_project(project_id: str):
    from pbn_builder.main import get_runner

    if not await get_runner().delete_project(project_id):
        raise HTTPException(404, "Project not found")
    return Message(message="Project deleted")


@router.post("/{project_id}/run", response_model=Message)
async def run_project(project_id: str):
    from pbn_builder.main import get_runner

    logger.info("Run request for project %s", project_id)
    try:
        await get_runner().start_project(project_id)
    except ProjectNotFoundError:
        raise HTTPException(404, "Project not found")
    except ProjectRunningError:
        raise HTTPException(400, "Project already running")
    return Message(message="Project started")
