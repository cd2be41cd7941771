from datetime import datetime, timezone

import pytest

from pbn_builder.config import settings
from pbn_builder.errors import DeployError
from pbn_builder.models.project import ProgressEntry
from pbn_builder.storage.state import StateDB


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "state_db_path", str(tmp_path / "state.db"))
    monkeypatch.setattr(settings, "sites_base_path", str(tmp_path / "sites"))
    monkeypatch.setattr(settings, "jwt_secret", "test-secret-key-with-enough-bytes-for-hs256")
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    monkeypatch.setattr(settings, "github_pat", "ghp_test")
    monkeypatch.setattr(settings, "github_owner", "")
    monkeypatch.setattr(settings, "vercel_token", "vercel-test")
    monkeypatch.setattr(settings, "vercel_team_id", None)
    monkeypatch.setattr(settings, "llm_retry_delay", 0.0)
    monkeypatch.setattr(settings, "readiness_initial_delay", 0.0)
    monkeypatch.setattr(settings, "readiness_max_delay", 0.0)
    monkeypatch.setattr(settings, "readiness_timeout", 1.0)
    monkeypatch.setattr(settings, "cleanup_retry_seconds", 3600.0)
    yield


@pytest.fixture
def state_db(tmp_path):
    db = StateDB(str(tmp_path / "state.db"))
    yield db
    db.close()


class RecordingPublisher:
    def __init__(self):
        self.projects = []
        self.summaries = []

    async def publish_project(self, event):
        self.projects.append(event)

    async def publish_summary(self, summary):
        self.summaries.append(summary)


class FakeGitHub:
    token = "ghp_test"

    def __init__(self):
        self.deleted = []
        self.fail_deletes = False

    async def delete_repo(self, owner, repo):
        if self.fail_deletes:
            raise RuntimeError("github unavailable")
        self.deleted.append((owner, repo))


class FakeVercel:
    def __init__(self):
        self.deleted = []
        self.fail_deletes = False

    async def delete_project(self, project_id):
        if self.fail_deletes:
            raise DeployError("vercel unavailable")
        self.deleted.append(project_id)


class FakePipeline:
    """模擬成功建立網站；fail_at 指定第幾次呼叫拋出例外。"""

    def __init__(self, fail_at: int | None = None, error: Exception | None = None):
        self.calls = 0
        self.fail_at = fail_at
        self.error = error or RuntimeError("pipeline failed")

    async def create_site(self, project, project_dir, draft):
        self.calls += 1
        draft.owner = "acme"
        draft.repo_created = True
        if self.fail_at == self.calls:
            raise self.error
        draft.vercel_project_id = f"prj_{self.calls}"
        return ProgressEntry(
            site_id=draft.site_id,
            status="deployed",
            created_at=datetime.now(timezone.utc),
            repo_url=f"https://github.com/acme/{draft.repo_name}.git",
            repo_name=draft.repo_name,
            vercel_url=f"https://{draft.repo_name}.vercel.app",
            vercel_project_id=draft.vercel_project_id,
            owner="acme",
        )


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def fake_vercel():
    return FakeVercel()


def progress_entry(n: int, created_at: str = "2026-01-01T00:00:00+00:00") -> dict:
    return {
        "site_id": f"pbn-1-{n}",
        "status": "deployed",
        "created_at": created_at,
        "repo_url": f"https://github.com/acme/site-pbn-1-{n}.git",
        "repo_name": f"site-pbn-1-{n}",
        "vercel_url": f"https://site-pbn-1-{n}.vercel.app",
        "vercel_project_id": f"prj_{n}",
        "owner": "acme",
    }
