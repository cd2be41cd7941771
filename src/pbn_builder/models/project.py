from datetime import datetime

from pydantic import Field

from pbn_builder.models.base import CamelModel

# 專案名稱同時作為本機目錄名稱，不允許路徑分隔符號
NAME_PATTERN = r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$"


class ProgressEntry(CamelModel):
    site_id: str
    status: str  # deployed
    created_at: datetime
    repo_url: str
    repo_name: str
    vercel_url: str
    vercel_project_id: str
    owner: str


class ProjectCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100, pattern=NAME_PATTERN)
    system_prompt: str = Field(min_length=1)
    user_prompt: str = Field(min_length=1)
    site_count: int = Field(ge=1)
    interval: int = Field(ge=1, description="seconds between sites")


class ProjectUpdate(ProjectCreate):
    pass


class Project(CamelModel):
    id: str
    name: str
    system_prompt: str
    user_prompt: str
    site_count: int
    interval: int
    status: str  # pending, running, completed, error
    is_running: bool = False
    progress: list[ProgressEntry] = []
    created_at: datetime
    next_run_at: datetime | None = None


class ProjectCreated(CamelModel):
    project_id: str


class ProjectEvent(CamelModel):
    """推播給儀表板的單一專案狀態。"""

    project_id: str
    status: str
    progress: list[ProgressEntry] = []
    site_count: int
    is_running: bool


class Summary(CamelModel):
    total_projects: int
    total_sites: int
    average_creation_time: str
    ai_model: str
    last_site_date: str
