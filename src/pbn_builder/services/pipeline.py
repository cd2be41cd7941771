"""單一網站建立 pipeline：LLM → 寫檔 → GitHub repo → push → Vercel 部署。"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from pbn_builder.clients.git import GitRepo
from pbn_builder.clients.github import GitHubClient
from pbn_builder.clients.llm import LLMClient
from pbn_builder.clients.vercel import VercelClient
from pbn_builder.config import settings
from pbn_builder.models.project import ProgressEntry
from pbn_builder.services.readiness import wait_until

logger = logging.getLogger(__name__)


@dataclass
class SiteDraft:
    """記錄建立過程中已產生的遠端資源，失敗時供補償清理使用。"""

    site_id: str
    repo_name: str
    owner: str | None = None
    repo_created: bool = False
    vercel_project_id: str | None = None


class SitePipeline:
    def __init__(
        self,
        llm: LLMClient,
        github: GitHubClient,
        vercel: VercelClient,
        git_factory=GitRepo,
    ):
        self.llm = llm
        self.github = github
        self.vercel = vercel
        self.git_factory = git_factory

    async def _wait(self, check, description: str):
        await wait_until(
            check,
            timeout=settings.readiness_timeout,
            initial_delay=settings.readiness_initial_delay,
            max_delay=settings.readiness_max_delay,
            description=description,
        )

    async def create_site(
        self, project: dict, project_dir: Path, draft: SiteDraft
    ) -> ProgressEntry:
        site_id = draft.site_id
        repo_name = draft.repo_name
        logger.info("Creating site %s for project %s", site_id, project["name"])

        html = await self.llm.generate_html(project["system_prompt"], project["user_prompt"])

        site_dir = project_dir / repo_name
        logger.info("Writing %s", site_dir / "index.html")
        site_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread((site_dir / "index.html").write_text, html, encoding="utf-8")

        repo = await self.github.create_repo(repo_name)
        owner = repo["owner"]
        draft.owner = owner
        draft.repo_created = True

        await self._wait(
            lambda: self.github.repo_exists(owner, repo_name),
            f"GitHub repo {owner}/{repo_name}",
        )
        branch = await self.github.get_default_branch(owner, repo_name)

        git = self.git_factory(site_dir, (self.github.token,))
        await git.publish(branch, self.github.authenticated_url(repo["clone_url"]), "Add PBN page")

        async def pushed() -> bool:
            return "index.html" in await self.github.list_contents(owner, repo_name, branch)

        await self._wait(pushed, f"index.html on {owner}/{repo_name}@{branch}")

        deployment = await self.vercel.create_project(repo_name, repo["id"], owner)
        draft.vercel_project_id = deployment["project_id"]
        await self.vercel.trigger_deploy(repo_name, repo["id"], owner, branch)

        return ProgressEntry(
            site_id=site_id,
            status="deployed",
            created_at=datetime.now(timezone.utc),
            repo_url=repo["clone_url"],
            repo_name=repo_name,
            vercel_url=deployment["domain"],
            vercel_project_id=deployment["project_id"],
            owner=owner,
        )
