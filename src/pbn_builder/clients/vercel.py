import logging

import httpx

from pbn_builder.config import settings
from pbn_builder.errors import DeployError

logger = logging.getLogger(__name__)


class VercelClient:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self.token = settings.vercel_token
        self.team_id = settings.vercel_team_id
        self.client = client or httpx.AsyncClient(base_url=settings.vercel_api_url, timeout=30.0)

    def _headers(self) -> dict:
        if not self.token:
            raise DeployError("VERCEL_TOKEN is not configured")
        return {"Authorization": f"Bearer {self.token}"}

    def _params(self) -> dict:
        return {"teamId": self.team_id} if self.team_id else {}

    async def create_project(self, repo_name: str, repo_id: int, owner: str) -> dict:
        """建立綁定 GitHub repo 的 Vercel 專案，回傳 project_id 與 https 網域。"""
        logger.info("Creating Vercel project: %s", repo_name)
        resp = await self.client.post(
            "/v10/projects",
            headers=self._headers(),
            params=self._params(),
            json={
                "name": repo_name,
                "gitRepository": {
                    "type": "github",
                    "repo": f"{owner}/{repo_name}",
                    "repoId": repo_id,
                },
                "framework": None,
                "buildCommand": None,
                "installCommand": None,
                "outputDirectory": None,
            },
        )
        if resp.is_error:
            raise DeployError(
                f"Failed to create Vercel project {repo_name}: {resp.status_code} {resp.text}"
            )
        data = resp.json()
        domains = data.get("domains") or []
        domain = domains[0] if domains else f"{repo_name}.vercel.app"
        return {"project_id": data["id"], "domain": f"https://{domain}"}

    async def trigger_deploy(self, repo_name: str, repo_id: int, owner: str, ref: str) -> str:
        logger.info("Triggering Vercel deploy for repo: %s", repo_name)
        resp = await self.client.post(
            "/v13/deployments",
            headers=self._headers(),
            params=self._params(),
            json={
                "name": repo_name,
                "target": "production",
                "gitSource": {
                    "type": "github",
                    "repo": f"{owner}/{repo_name}",
                    "repoId": repo_id,
                    "ref": ref,
                },
            },
        )
        if resp.is_error:
            raise DeployError(f"Failed to deploy {repo_name}: {resp.status_code} {resp.text}")
        return resp.json()["id"]

    async def delete_project(self, project_id: str):
        """刪除 Vercel 專案；404 視為已刪除。"""
        logger.info("Deleting Vercel project: %s", project_id)
        resp = await self.client.delete(
            f"/v10/projects/{project_id}", headers=self._headers(), params=self._params()
        )
        if resp.status_code == 404:
            return
        if resp.is_error:
            raise DeployError(
                f"Failed to delete Vercel project {project_id}: {resp.status_code} {resp.text}"
            )

    async def close(self):
        await self.client.aclose()
