import logging

import httpx

from pbn_builder.config import settings
from pbn_builder.errors import RepoHostError

logger = logging.getLogger(__name__)


class GitHubClient:
    """以 personal access token 操作使用者帳號下的 repository。"""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self.token = settings.github_pat
        self.client = client or httpx.AsyncClient(
            base_url=settings.github_api_url,
            headers={"Accept": "application/vnd.github+json"},
            timeout=30.0,
        )

    def _headers(self) -> dict:
        if not self.token:
            raise RepoHostError("GITHUB_PAT is not configured")
        return {"Authorization": f"Bearer {self.token}"}

    def authenticated_url(self, clone_url: str) -> str:
        """把 token 放進 clone URL，供 git push 使用。"""
        return clone_url.replace("https://", f"https://{self.token}@", 1)

    async def create_repo(self, name: str) -> dict:
        logger.info("Creating GitHub repo: %s", name)
        resp = await self.client.post(
            "/user/repos",
            headers=self._headers(),
            json={"name": name, "private": True, "auto_init": False},
        )
        if resp.is_error:
            raise RepoHostError(f"Failed to create repo {name}: {resp.status_code} {resp.text}")
        data = resp.json()
        owner = data["owner"]["login"]
        logger.info("GitHub repo created: %s, owner: %s", data["clone_url"], owner)
        if settings.github_owner and owner != settings.github_owner:
            logger.warning(
                "GitHub owner (%s) does not match GITHUB_OWNER (%s)", owner, settings.github_owner
            )
        return {"clone_url": data["clone_url"], "id": data["id"], "owner": owner}

    async def get_repo(self, owner: str, repo: str) -> dict | None:
        resp = await self.client.get(f"/repos/{owner}/{repo}", headers=self._headers())
        if resp.status_code == 404:
            return None
        if resp.is_error:
            raise RepoHostError(f"Failed to fetch {owner}/{repo}: {resp.status_code}")
        return resp.json()

    async def repo_exists(self, owner: str, repo: str) -> bool:
        return await self.get_repo(owner, repo) is not None

    async def get_default_branch(self, owner: str, repo: str) -> str:
        logger.info("Fetching default branch for %s/%s", owner, repo)
        try:
            data = await self.get_repo(owner, repo)
        except (RepoHostError, httpx.HTTPError) as e:
            logger.error("Error getting default branch for %s/%s: %s", owner, repo, e)
            return "main"
        if not data or not data.get("default_branch"):
            return "main"
        return data["default_branch"]

    async def list_contents(self, owner: str, repo: str, ref: str) -> list[str]:
        """列出 repo 根目錄的檔名；空 repo 回傳空清單。"""
        resp = await self.client.get(
            f"/repos/{owner}/{repo}/contents",
            headers=self._headers(),
            params={"ref": ref},
        )
        if resp.status_code == 404:
            return []
        if resp.is_error:
            raise RepoHostError(f"Failed to list contents of {owner}/{repo}: {resp.status_code}")
        return [item["name"] for item in resp.json()]

    async def delete_repo(self, owner: str, repo: str):
        """刪除 repo；已不存在（404）視為成功。"""
        logger.info("Deleting GitHub repo: %s/%s", owner, repo)
        resp = await self.client.delete(f"/repos/{owner}/{repo}", headers=self._headers())
        if resp.status_code == 404:
            logger.info("Repository %s/%s not found, skipping deletion", owner, repo)
            return
        if resp.is_error:
            raise RepoHostError(f"Failed to delete {owner}/{repo}: {resp.status_code} {resp.text}")

    async def close(self):
        await self.client.aclose()
