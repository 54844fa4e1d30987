"""Tests for the Vercel deployment poller — httpx.MockTransport, no network."""

from __future__ import annotations

import json

import httpx
import pytest

from src.errors import DeploymentFailedError, DeploymentTimeoutError, DeployTriggerError
from src.tools.vercel_deployer import DeploymentRecord, DeploymentStatus, VercelDeployer


class FakeVercel:
    """Scripted Vercel API: each poll pops the next step from *polls*.

    A step is a payload dict, an ``int`` status code, or an exception to raise.
    The last step repeats once the script runs out.
    """

    def __init__(self, polls, project_status=200, trigger_status=200, trigger_body=None):
        self.polls = list(polls)
        self.project_status = project_status
        self.trigger_status = trigger_status
        self.trigger_body = trigger_body if trigger_body is not None else {
            "id": "dpl_1", "readyState": "QUEUED",
        }
        self.requests: list[httpx.Request] = []
        self.poll_count = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/v11/projects":
            if self.project_status != 200:
                return httpx.Response(
                    self.project_status,
                    json={"error": {"code": "conflict", "message": "Project already exists"}},
                )
            return httpx.Response(200, json={"id": "prj_1", "name": "todo"})
        if request.method == "POST" and path == "/v13/deployments":
            if self.trigger_status != 200:
                return httpx.Response(
                    self.trigger_status, json={"error": {"message": "Not authorized"}}
                )
            return httpx.Response(200, json=self.trigger_body)
        if request.method == "GET" and path == "/v13/deployments/dpl_1":
            self.poll_count += 1
            step = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
            if isinstance(step, Exception):
                raise step
            if isinstance(step, int):
                return httpx.Response(step, json={"error": {"message": "upstream"}})
            return httpx.Response(200, json=step)
        return httpx.Response(404)

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


def _deployer(api: FakeVercel, **kwargs) -> VercelDeployer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    options = {"poll_interval": 0.001, "timeout": 2.0}
    options.update(kwargs)
    return VercelDeployer(client, **options)


READY = {"id": "dpl_1", "readyState": "READY", "url": "todo-abc.vercel.app"}
BUILDING = {"id": "dpl_1", "readyState": "BUILDING"}


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestDeploySuccess:
    @pytest.mark.asyncio
    async def test_building_then_ready(self):
        api = FakeVercel([BUILDING, BUILDING, READY])
        url = await _deployer(api).deploy("octo/todo", "tok")

        assert url == "https://todo-abc.vercel.app"
        assert api.poll_count == 3
        assert all(r.headers["authorization"] == "Bearer tok" for r in api.requests)

    @pytest.mark.asyncio
    async def test_trigger_payload(self):
        api = FakeVercel([READY])
        await _deployer(api).deploy("octo/todo", "tok", branch="dev")

        project = api.bodies("/v11/projects")[0]
        assert project["gitRepository"] == {"type": "github", "repo": "octo/todo"}
        body = api.bodies("/v13/deployments")[0]
        assert body["name"] == "todo"
        assert body["project"] == "prj_1"
        assert body["gitSource"] == {"type": "github", "org": "octo", "repo": "todo", "ref": "dev"}

    @pytest.mark.asyncio
    async def test_alias_fallback(self):
        api = FakeVercel([{"id": "dpl_1", "readyState": "READY", "alias": ["todo.vercel.app"]}])
        assert await _deployer(api).deploy("octo/todo", "tok") == "https://todo.vercel.app"

    @pytest.mark.asyncio
    async def test_project_conflict_is_not_fatal(self):
        api = FakeVercel([READY], project_status=409)
        url = await _deployer(api).deploy("octo/todo", "tok")

        assert url == "https://todo-abc.vercel.app"
        assert "project" not in api.bodies("/v13/deployments")[0]

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        api = FakeVercel([
            httpx.ConnectError("connection reset"),
            503,
            429,
            httpx.ReadTimeout("slow"),
            READY,
        ])
        url = await _deployer(api).deploy("octo/todo", "tok")
        assert url == "https://todo-abc.vercel.app"
        assert api.poll_count == 5

    @pytest.mark.asyncio
    async def test_not_found_while_propagating_is_retried(self):
        api = FakeVercel([404, 404, BUILDING, READY])
        url = await _deployer(api).deploy("octo/todo", "tok")
        assert url == "https://todo-abc.vercel.app"
        assert api.poll_count == 4

    @pytest.mark.asyncio
    async def test_team_id_is_sent(self):
        api = FakeVercel([READY])
        await _deployer(api, team_id="team_9").deploy("octo/todo", "tok")
        assert all(r.url.params["teamId"] == "team_9" for r in api.requests)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestDeployFailure:
    @pytest.mark.asyncio
    async def test_stuck_building_times_out(self):
        api = FakeVercel([BUILDING])
        with pytest.raises(DeploymentTimeoutError) as exc_info:
            await _deployer(api, timeout=0.05, poll_interval=0.005).deploy("octo/todo", "tok")
        assert exc_info.value.last_status == "BUILDING"
        assert exc_info.value.deployment_id == "dpl_1"
        assert "Current status: BUILDING" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_error_carries_remote_message(self):
        api = FakeVercel([
            {"id": "dpl_1", "readyState": "ERROR", "errorMessage": "Command \"npm run build\" exited with 1"},
        ])
        with pytest.raises(DeploymentFailedError) as exc_info:
            await _deployer(api).deploy("octo/todo", "tok")
        assert exc_info.value.status == "ERROR"
        assert 'Command "npm run build" exited with 1' in str(exc_info.value)
        assert api.poll_count == 1

    @pytest.mark.asyncio
    async def test_canceled_is_terminal(self):
        api = FakeVercel([{"id": "dpl_1", "readyState": "CANCELED"}])
        with pytest.raises(DeploymentFailedError, match="status=CANCELED"):
            await _deployer(api).deploy("octo/todo", "tok")

    @pytest.mark.asyncio
    async def test_trigger_failure(self):
        api = FakeVercel([READY], trigger_status=403)
        with pytest.raises(DeployTriggerError) as exc_info:
            await _deployer(api).deploy("octo/todo", "tok")
        assert exc_info.value.status == 403
        assert exc_info.value.remote_message == "Not authorized"
        assert api.poll_count == 0

    @pytest.mark.asyncio
    async def test_trigger_without_id(self):
        api = FakeVercel([READY], trigger_body={"readyState": "QUEUED"})
        with pytest.raises(DeployTriggerError, match="unexpected deployment response"):
            await _deployer(api).deploy("octo/todo", "tok")

    @pytest.mark.asyncio
    async def test_poll_auth_error_is_fatal(self):
        api = FakeVercel([403])
        with pytest.raises(DeploymentFailedError, match="HTTP 403"):
            await _deployer(api).deploy("octo/todo", "tok")
        assert api.poll_count == 1

    @pytest.mark.asyncio
    async def test_unknown_status_is_reported_on_timeout(self):
        api = FakeVercel([{"id": "dpl_1", "readyState": "PROVISIONING"}])
        with pytest.raises(DeploymentTimeoutError) as exc_info:
            await _deployer(api, timeout=0.05, poll_interval=0.005).deploy("octo/todo", "tok")
        assert exc_info.value.last_status == "PROVISIONING"
        assert "Current status: PROVISIONING" in str(exc_info.value)

    @pytest.mark.parametrize("name", ["todo", "/todo", "octo/", "a/b/c"])
    @pytest.mark.asyncio
    async def test_malformed_repo_name(self, name):
        api = FakeVercel([READY])
        with pytest.raises(DeployTriggerError, match="owner/repo"):
            await _deployer(api).deploy(name, "tok")
        assert api.requests == []


class TestDeploymentRecord:
    def test_status_parsing(self):
        record = DeploymentRecord(id="d")
        record.update({"status": "ready", "url": "https://x.vercel.app"})
        assert record.status is DeploymentStatus.READY
        assert record.status.terminal
        assert record.url == "https://x.vercel.app"

    def test_unknown_status(self):
        record = DeploymentRecord(id="d")
        record.update({"readyState": "SOMETHING_NEW"})
        assert record.status is None
        assert record.raw_status == "SOMETHING_NEW"
