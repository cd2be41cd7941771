"""補償清理：本機檔案、GitHub repo、Vercel 專案。

每個步驟都是冪等的（已不存在視為成功），失敗的步驟寫入 cleanup_tasks，
由 JobRunner 的背景迴圈重試，不會向上拋出。
"""

import asyncio
import logging
import shutil

from pbn_builder.clients.github import GitHubClient
from pbn_builder.clients.vercel import VercelClient
from pbn_builder.config import settings
from pbn_builder.storage.state import StateDB

logger = logging.getLogger(__name__)

REPO = "repo"
DEPLOYMENT = "deployment"


class CleanupService:
    def __init__(self, state_db: StateDB, github: GitHubClient, vercel: VercelClient):
        self.state_db = state_db
        self.github = github
        self.vercel = vercel

    async def delete_local_files(self, project_name: str):
        project_dir = settings.project_dir(project_name)
        logger.info("Deleting directory: %s", project_dir)
        try:
            await asyncio.to_thread(shutil.rmtree, project_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("Error deleting project files %s: %s", project_dir, e)

    async def _run_step(self, kind: str, target: str, owner: str) -> bool:
        if kind == REPO:
            await self.github.delete_repo(owner, target)
        elif kind == DEPLOYMENT:
            await self.vercel.delete_project(target)
        else:
            raise ValueError(f"Unknown cleanup kind: {kind}")
        return True

    async def _step(self, kind: str, target: str, owner: str = "") -> bool:
        try:
            return await self._run_step(kind, target, owner)
        except Exception as e:
            logger.error("Error deleting %s %s: %s (queued for retry)", kind, target, e)
            self.state_db.add_cleanup_task(kind, target, owner, str(e))
            return False

    async def delete_site(
        self, repo_name: str | None, owner: str | None, vercel_project_id: str | None
    ) -> bool:
        ok = True
        if repo_name and owner:
            ok = await self._step(REPO, repo_name, owner) and ok
        if vercel_project_id:
            ok = await self._step(DEPLOYMENT, vercel_project_id) and ok
        return ok

    async def compensate(self, entries: list[dict]) -> int:
        """刪除進度紀錄中所有遠端資源，回傳失敗（已排入重試）的網站數。"""
        failed = 0
        for entry in entries:
            ok = await self.delete_site(
                entry.get("repo_name"), entry.get("owner"), entry.get("vercel_project_id")
            )
            if not ok:
                failed += 1
        return failed

    async def cleanup_project(self, project: dict) -> int:
        await self.delete_local_files(project["name"])
        return await self.compensate(project["progress"])

    async def retry_pending(self) -> int:
        """重試先前失敗的清理步驟，回傳本次完成的數量。"""
        done = 0
        for task in self.state_db.pending_cleanup_tasks(settings.cleanup_max_attempts):
            try:
                await self._run_step(task["kind"], task["target"], task["owner"])
            except Exception as e:
                self.state_db.fail_cleanup_task(task["id"], str(e))
                if task["attempts"] + 1 >= settings.cleanup_max_attempts:
                    logger.error(
                        "Giving up on %s %s after %d attempts: %s",
                        task["kind"], task["target"], task["attempts"] + 1, e,
                    )
                continue
            self.state_db.complete_cleanup_task(task["id"])
            done += 1
        return done
