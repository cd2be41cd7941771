"""專案執行器：每個 tick 建立一個網站，直到達到 site_count 或第一次失敗。

排程狀態（is_running / next_run_at）存在 StateDB，程序重啟後背景迴圈會接續執行。
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone

from pbn_builder.config import settings
from pbn_builder.errors import ProjectNotFoundError, ProjectRunningError
from pbn_builder.models.project import ProjectEvent, ProgressEntry
from pbn_builder.services.cleanup import CleanupService
from pbn_builder.services.pipeline import SiteDraft, SitePipeline
from pbn_builder.services.summary import calculate_summary
from pbn_builder.services.updates import UpdatePublisher
from pbn_builder.storage.state import StateDB

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRunner:
    def __init__(
        self,
        state_db: StateDB,
        pipeline: SitePipeline,
        cleanup: CleanupService,
        publisher: UpdatePublisher,
    ):
        self.state_db = state_db
        self.pipeline = pipeline
        self.cleanup = cleanup
        self.publisher = publisher
        self._in_flight: set[str] = set()
        self._tick_tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._start_lock = asyncio.Lock()
        self._last_cleanup_retry = 0.0

    # ---- 推播 ----

    async def publish_project(self, project: dict, status: str | None = None, is_running: bool | None = None):
        await self.publisher.publish_project(
            ProjectEvent(
                project_id=project["id"],
                status=status or project["status"],
                progress=[ProgressEntry(**p) for p in project["progress"]],
                site_count=project["site_count"],
                is_running=project["is_running"] if is_running is None else is_running,
            )
        )

    async def publish_summary(self):
        summary = calculate_summary(self.state_db.list_projects(), settings.openai_model)
        await self.publisher.publish_summary(summary)

    # ---- 生命週期 ----

    def start(self):
        resumed = 0
        for project in self.state_db.running_projects():
            resumed += 1
            if project["next_run_at"] is None:
                self.state_db.schedule_next_run(project["id"], _utcnow().isoformat())
        if resumed:
            logger.info("Resuming %d running project(s)", resumed)
        self._loop_task = asyncio.create_task(self._loop())

    async def stop(self):
        if self._loop_task:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        if self._tick_tasks:
            logger.info("Waiting for %d in-flight site(s) to finish...", len(self._tick_tasks))
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)

    async def _loop(self):
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Scheduler poll failed")
            await asyncio.sleep(settings.scheduler_poll_seconds)

    async def poll_once(self) -> list[asyncio.Task]:
        """啟動所有到期且尚未執行中的 tick，並定期重試失敗的清理步驟。"""
        if time.monotonic() - self._last_cleanup_retry >= settings.cleanup_retry_seconds:
            self._last_cleanup_retry = time.monotonic()
            await self.cleanup.retry_pending()

        started = []
        for project in self.state_db.due_projects(_utcnow().isoformat()):
            project_id = project["id"]
            if project_id in self._in_flight:
                continue
            self._in_flight.add(project_id)
            task = asyncio.create_task(self._guarded_tick(project_id))
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            started.append(task)
        return started

    async def _guarded_tick(self, project_id: str):
        try:
            await self.run_tick(project_id)
        except Exception:
            logger.exception("Unexpected error in tick for project %s", project_id)
            project = self.state_db.get_project(project_id)
            if project:
                await self._fail(project, None)
        finally:
            self._in_flight.discard(project_id)

    # ---- 執行 ----

    async def start_project(self, project_id: str):
        async with self._start_lock:
            project = self.state_db.get_project(project_id)
            if not project:
                raise ProjectNotFoundError(project_id)
            if project["is_running"]:
                raise ProjectRunningError(f"Project '{project['name']}' already running")
            # 先標記 running（尚未排程），避免清理期間被重複啟動
            self.state_db.set_project_state(project_id, "running", True, None)

        try:
            await self._prepare_run(project)
        except Exception:
            logger.exception("Failed to start project %s", project["name"])
            current = self.state_db.get_project(project_id)
            if current and current["status"] == "running":
                self.state_db.set_project_state(project_id, "error", False, None)
                await self.publish_project(self.state_db.get_project(project_id))
                await self.publish_summary()
            raise

    async def _prepare_run(self, project: dict):
        project_id = project["id"]
        logger.info("Clearing previous files for project %s", project["name"])
        await self.cleanup.cleanup_project(project)
        self.state_db.reset_progress(project_id)

        current = self.state_db.get_project(project_id)
        if not current or not current["is_running"]:
            # 清理期間專案被刪除
            logger.info("Project %s was removed while starting", project["name"])
            return
        settings.project_dir(project["name"]).mkdir(parents=True, exist_ok=True)

        next_run = _utcnow() + timedelta(seconds=project["interval"])
        self.state_db.schedule_next_run(project_id, next_run.isoformat())
        current = self.state_db.get_project(project_id)
        if not current or not current["is_running"]:
            await self.cleanup.delete_local_files(project["name"])
            return
        await self.publish_project(current)
        logger.info("Project %s started, first site at %s", project["name"], next_run.isoformat())

    async def delete_project(self, project_id: str) -> bool:
        """停止排程並刪除專案與其所有網站；專案不存在時回傳 False。"""
        project = self.state_db.get_project(project_id)
        if not project:
            return False
        await self.publish_project(project, status="deleting", is_running=True)

        # 標記之後，進行中的 tick 無法再附加進度，會自行清理它建立的網站
        project = self.state_db.begin_delete(project_id)
        if not project:
            return False
        failed = await self.cleanup.cleanup_project(project)
        if failed:
            logger.warning("%d site(s) of project %s queued for cleanup retry", failed, project["name"])
        self.state_db.delete_project(project_id)
        await self.publish_summary()
        return True

    async def run_tick(self, project_id: str) -> str | None:
        """建立下一個網站，回傳專案在此 tick 後的狀態。"""
        project = self.state_db.get_project(project_id)
        if not project or not project["is_running"]:
            return None

        done = len(project["progress"])
        if done >= project["site_count"]:
            return await self._complete(project)

        current = done + 1
        site_id = f"pbn-{int(time.time() * 1000)}-{current}"
        draft = SiteDraft(site_id=site_id, repo_name=f"site-{site_id}")
        logger.info("Creating site %d/%d for project %s", current, project["site_count"], project["name"])
        await self.publish_project(project, status="running", is_running=True)

        try:
            entry = await self.pipeline.create_site(
                project, settings.project_dir(project["name"]), draft
            )
        except Exception as e:
            logger.error("Error creating site %d for project %s: %s", current, project["name"], e)
            return await self._fail(project, draft)

        try:
            length = self.state_db.append_progress(
                project_id, entry.model_dump(mode="json"), only_running=True
            )
        except KeyError:
            length = None
        if length is None:
            # 專案在建立途中被刪除或停止
            logger.warning("Project %s disappeared during site creation, removing site %s", project_id, site_id)
            await self.cleanup.delete_site(draft.repo_name, draft.owner, draft.vercel_project_id)
            return None

        project = self.state_db.get_project(project_id)
        if length >= project["site_count"]:
            status = await self._complete(project)
        else:
            next_run = _utcnow() + timedelta(seconds=project["interval"])
            self.state_db.schedule_next_run(project_id, next_run.isoformat())
            await self.publish_project(project, status="running", is_running=True)
            status = "running"
        await self.publish_summary()
        return status

    async def _complete(self, project: dict) -> str:
        logger.info("All sites created for project %s", project["name"])
        self.state_db.set_project_state(project["id"], "completed", False, None)
        project = self.state_db.get_project(project["id"])
        await self.publish_project(project)
        await self.publish_summary()
        return "completed"

    async def _fail(self, project: dict, draft: SiteDraft | None) -> str:
        self.state_db.set_project_state(project["id"], "error", False, None)
        await self.cleanup.cleanup_project(project)
        if draft:
            await self.cleanup.delete_site(
                draft.repo_name if draft.repo_created else None,
                draft.owner,
                draft.vercel_project_id,
            )
        project = self.state_db.get_project(project["id"]) or project
        await self.publish_project(project, status="error", is_running=False)
        await self.publish_summary()
        return "error"
