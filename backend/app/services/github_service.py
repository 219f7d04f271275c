"""
Read-only GitHub listings for the dashboard.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class GitHubService:
    def __init__(self, org: str, token: Optional[str] = None,
                 api_url: str = "https://api.github.com", timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.org = org
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.api_url, headers=self._headers(),
                                 timeout=self.timeout, transport=self.transport)

    async def _get(self, client: httpx.AsyncClient, path: str, **params) -> Any:
        try:
            response = await client.get(path, params=params or None)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamError(f"GitHub request {path} failed: {e}") from e
        return response.json()

    async def list_repositories(self) -> List[Dict[str, Any]]:
        async with self._client() as client:
            repos = await self._get(client, f"/orgs/{self.org}/repos", per_page=100, sort="updated")
        return [
            {
                "id": repo.get("id"),
                "name": repo.get("name"),
                "fullName": repo.get("full_name"),
                "url": repo.get("html_url"),
                "description": repo.get("description"),
                "defaultBranch": repo.get("default_branch"),
                "updatedAt": repo.get("updated_at"),
                "private": repo.get("private", False),
            }
            for repo in repos
        ]

    async def list_open_pull_requests(self) -> List[Dict[str, Any]]:
        pull_requests: List[Dict[str, Any]] = []
        async with self._client() as client:
            repos = await self._get(client, f"/orgs/{self.org}/repos", per_page=100)
            for repo in repos:
                pulls = await self._get(client, f"/repos/{self.org}/{repo['name']}/pulls",
                                        state="open", per_page=100)
                for pr in pulls:
                    pull_requests.append({
                        "number": pr.get("number"),
                        "title": pr.get("title"),
                        "author": (pr.get("user") or {}).get("login"),
                        "url": pr.get("html_url"),
                        "repoName": repo.get("name"),
                        "branch": (pr.get("head") or {}).get("ref"),
                        "labels": [label.get("name") for label in pr.get("labels", [])],
                        "createdAt": pr.get("created_at"),
                    })
        logger.info("Found %d open pull requests in %s", len(pull_requests), self.org)
        pull_requests.sort(key=lambda pr: pr.get("createdAt") or "", reverse=True)
        return pull_requests

    async def check_health(self) -> Dict[str, Any]:
        async with self._client() as client:
            payload = await self._get(client, "/rate_limit")
        core = (payload.get("resources") or {}).get("core") or payload.get("rate") or {}
        return {
            "connected": True,
            "organization": self.org,
            "rateLimitRemaining": core.get("remaining"),
        }
