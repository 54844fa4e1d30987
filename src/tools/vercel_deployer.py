"""Vercel deployment poller — create project, trigger, poll until terminal.

State machine::

    CREATING → (poll) QUEUED / BUILDING → READY | ERROR | CANCELED
                                       ↘ TIMEOUT (deploy_timeout elapsed)
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from src.errors import DeploymentFailedError, DeploymentTimeoutError, DeployTriggerError

logger = logging.getLogger("sanka")


class DeploymentStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    INITIALIZING = "INITIALIZING"
    BUILDING = "BUILDING"
    READY = "READY"
    ERROR = "ERROR"
    CANCELED = "CANCELED"

    @classmethod
    def parse(cls, raw: Any) -> "DeploymentStatus | None":
        try:
            return cls(str(raw or "").upper())
        except ValueError:
            return None

    @property
    def terminal(self) -> bool:
        return self in (DeploymentStatus.READY, DeploymentStatus.ERROR, DeploymentStatus.CANCELED)


@dataclass
class DeploymentRecord:
    id: str
    status: DeploymentStatus | None = None
    url: str | None = None
    error_message: str | None = None
    raw_status: str | None = None

    def update(self, data: dict[str, Any]) -> None:
        """Refresh from a Vercel deployment payload."""
        raw = data.get("readyState") or data.get("status")
        self.raw_status = str(raw) if raw else self.raw_status
        self.status = DeploymentStatus.parse(raw)
        self.url = _canonical_url(data)
        self.error_message = data.get("errorMessage")


def _canonical_url(data: dict[str, Any]) -> str | None:
    alias = data.get("alias") or []
    url = data.get("url") or data.get("aliasFinal") or (alias[0] if alias else None)
    if url and not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


# Auth failures; every other fetch error is retried until the deadline
FATAL_POLL_STATUSES = {401, 403}


def _is_fatal(exc: httpx.HTTPStatusError) -> bool:
    return exc.response.status_code in FATAL_POLL_STATUSES


def _remote_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return resp.text[:200]


class VercelDeployer:
    """Deploys a GitHub repository through the Vercel REST API.

    The ``httpx.AsyncClient`` is owned by the caller (built once in the app
    lifespan); the bearer token travels per call because clients send their
    own.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: str = "https://api.vercel.com",
        team_id: str = "",
        poll_interval: float = 3.0,
        timeout: float = 120.0,
    ) -> None:
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.team_id = team_id
        self.poll_interval = poll_interval
        self.timeout = timeout

    async def deploy(self, repo_full_name: str, token: str, branch: str = "main") -> str:
        """Deploy *repo_full_name* ("owner/name") and return the live URL."""
        owner, _, repo = repo_full_name.partition("/")
        if not owner or not repo or "/" in repo:
            raise DeployTriggerError("repoFullName must be 'owner/repo'.")

        headers = {"Authorization": f"Bearer {token}"}
        project_id = await self._ensure_project(repo, repo_full_name, headers)
        record = await self._trigger(project_id, owner, repo, repo_full_name, branch, headers)
        logger.info("Deployment %s created for %s", record.id, repo_full_name)

        try:
            await asyncio.wait_for(self._poll(record, headers), timeout=self.timeout)
        except asyncio.TimeoutError:
            last = record.status.value if record.status else record.raw_status
            raise DeploymentTimeoutError(record.id, last, self.timeout) from None

        if record.status is not DeploymentStatus.READY:
            raise DeploymentFailedError(record.id, record.status.value, record.error_message)
        logger.info("Deployment %s READY at %s", record.id, record.url)
        return record.url or ""

    def _params(self) -> dict[str, str]:
        return {"teamId": self.team_id} if self.team_id else {}

    async def _ensure_project(
        self, name: str, repo_full_name: str, headers: dict
    ) -> str | None:
        """Create the Vercel project linked to the repo; failures are not fatal."""
        try:
            resp = await self.client.post(
                f"{self.api_url}/v11/projects",
                params=self._params(),
                headers=headers,
                json={
                    "name": name,
                    "framework": "nextjs",
                    "gitRepository": {"type": "github", "repo": repo_full_name},
                },
            )
            resp.raise_for_status()
            return resp.json().get("id")
        except httpx.HTTPStatusError as e:
            logger.warning(
                "createProject warning (%s): %s",
                e.response.status_code, _remote_message(e.response),
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("createProject warning: %s", e)
        return None

    async def _trigger(
        self,
        project_id: str | None,
        owner: str,
        repo: str,
        repo_full_name: str,
        branch: str,
        headers: dict,
    ) -> DeploymentRecord:
        try:
            resp = await self.client.post(
                f"{self.api_url}/v13/deployments",
                params=self._params(),
                headers=headers,
                json={
                    "name": repo,
                    **({"project": project_id} if project_id else {}),
                    "target": "production",
                    "gitSource": {"type": "github", "org": owner, "repo": repo, "ref": branch},
                    "gitMetadata": {
                        "remoteUrl": f"https://github.com/{repo_full_name}",
                        "commitRef": branch,
                    },
                },
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            remote = _remote_message(e.response)
            raise DeployTriggerError(
                f"Failed to create Vercel deployment: {remote}",
                status=e.response.status_code,
                remote_message=remote,
            ) from e
        except httpx.HTTPError as e:
            raise DeployTriggerError(f"Failed to create Vercel deployment: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or not data.get("id"):
            raise DeployTriggerError("Vercel returned an unexpected deployment response.")
        record = DeploymentRecord(id=data["id"])
        record.update(data)
        return record

    async def _poll(self, record: DeploymentRecord, headers: dict) -> None:
        """Refresh *record* until it reaches a terminal status."""
        while True:
            try:
                resp = await self.client.get(
                    f"{self.api_url}/v13/deployments/{record.id}",
                    params=self._params(),
                    headers=headers,
                )
                resp.raise_for_status()
                record.update(resp.json())
            except httpx.HTTPStatusError as e:
                if _is_fatal(e):
                    raise DeploymentFailedError(
                        record.id,
                        f"HTTP {e.response.status_code}",
                        _remote_message(e.response),
                    ) from e
                logger.warning("fetchDeployment error: %s", e)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("fetchDeployment error: %s", e)
            else:
                if record.status is not None and record.status.terminal:
                    return
            await asyncio.sleep(self.poll_interval)
