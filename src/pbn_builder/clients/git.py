import asyncio
import logging
import subprocess
from pathlib import Path

from pbn_builder.errors import GitCommandError

logger = logging.getLogger(__name__)

COMMITTER = ["-c", "user.name=pbn-builder", "-c", "user.email=pbn-builder@localhost"]


class GitRepo:
    """在本機網站目錄執行 git 指令。"""

    def __init__(self, path: Path, secrets: tuple[str, ...] = ()):
        self.path = path
        self._secrets = tuple(s for s in secrets if s)

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, "***")
        return text

    def _run(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *COMMITTER, "-C", str(self.path), *args],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise GitCommandError(
                [self._redact(a) for a in args], result.returncode, self._redact(result.stderr)
            )
        return result.stdout

    async def run(self, *args: str) -> str:
        return await asyncio.to_thread(self._run, *args)

    async def publish(self, branch: str, remote_url: str, message: str):
        """init → 切換分支 → 設定 remote → commit → push。"""
        logger.info("Initializing git in %s with branch %s", self.path, branch)
        await self.run("init")
        await self.run("symbolic-ref", "HEAD", f"refs/heads/{branch}")
        await self.run("remote", "add", "origin", remote_url)
        await self.run("add", ".")
        await self.run("commit", "-m", message)
        logger.info("Pushing to %s", branch)
        await self.run("push", "--set-upstream", "origin", branch)
