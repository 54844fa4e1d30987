"""Command dispatcher — runs generate / push / deploy against a connection's session.

Each inbound message yields an immediate in-progress notice and, once the
step finishes, exactly one result notice. Steps run as background tasks so
the socket keeps reading; a second step on the same session is rejected
while one is in flight.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from src.errors import MissingCredentialError, SankaError
from src.pipeline.command_parser import DEPLOY, GENERATE, PUSH, UNRECOGNIZED, parse_command
from src.pipeline.session import GeneratedApp, RepoReference, Session
from src.tools.archive import make_zip, read_zip
from src.tools.github_publisher import RepoPublishResult, repo_name_for

if TYPE_CHECKING:
    from src.config import Settings
    from src.tools.app_generator import AppGenerator
    from src.tools.github_publisher import GitHubPublisher
    from src.tools.vercel_deployer import VercelDeployer

logger = logging.getLogger("sanka")

Send = Callable[[dict[str, Any]], Awaitable[None]]

FALLBACK_MESSAGE = "No valid command found."
NO_APP_MESSAGE = "No app found to push. Please generate one first."
NO_REPO_MESSAGE = "No GitHub repo found. Please push your app before deploying."


class CommandMessage(BaseModel):
    command: str = ""
    github_token: str | None = None
    vercel_token: str | None = None

    model_config = {"extra": "allow"}


def bot(mess: str, **extra: Any) -> dict[str, Any]:
    """Outbound event envelope: ``{"bot": {"mess": ..., "zip"?: ..., "link"?: ...}}``."""
    payload: dict[str, Any] = {"mess": mess}
    payload.update({k: v for k, v in extra.items() if v is not None})
    return {"bot": payload}


def error_event(exc: BaseException) -> dict[str, Any]:
    message = exc.message if isinstance(exc, SankaError) else str(exc)
    return bot(f"Error: {message}")


# ---------------------------------------------------------------------------
# Steps: each returns the value the dispatcher records on the session
# ---------------------------------------------------------------------------

async def generate_step(generator: "AppGenerator", app_name: str) -> GeneratedApp:
    files = await generator.generate(app_name)
    archive = await asyncio.to_thread(make_zip, files)
    return GeneratedApp(name=app_name, archive=archive)


async def push_step(
    publisher: "GitHubPublisher", app: GeneratedApp, token: str
) -> RepoPublishResult:
    files = await asyncio.to_thread(read_zip, app.archive)
    return await publisher.publish(repo_name_for(app.name), files, token)


async def deploy_step(
    deployer: "VercelDeployer", repo: RepoReference, token: str, branch: str
) -> str:
    return await deployer.deploy(repo.full_name, token, branch=branch)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class CommandDispatcher:
    """Routes parsed commands to their step and records results on the session."""

    def __init__(
        self,
        generator: "AppGenerator",
        publisher: "GitHubPublisher",
        deployer: "VercelDeployer",
        settings: "Settings",
    ) -> None:
        self.generator = generator
        self.publisher = publisher
        self.deployer = deployer
        self.settings = settings
        self._tasks: set[asyncio.Task] = set()

    async def handle(self, raw: str, session: Session, send: Send) -> asyncio.Task | None:
        """Handle one inbound message. Returns the step task, if one was started."""
        try:
            message = CommandMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("Bad command message: %s", e)
            await send(bot("Error: invalid command message"))
            return None

        command = parse_command(message.command)
        logger.info("Command: %r → %s", message.command, command.action)

        if command.action == UNRECOGNIZED:
            await send(bot(FALLBACK_MESSAGE))
            return None

        if session.in_flight:
            await send(bot(
                f"Still working on {session.in_flight}. "
                "Please wait for it to finish before sending another command."
            ))
            return None

        if command.action == GENERATE:
            return await self._start(
                session, send, GENERATE,
                f'Generating "{command.app_name}" app...',
                self._generate(session, command.app_name, send),
            )

        if command.action == PUSH:
            if session.generated_app is None:
                await send(bot(NO_APP_MESSAGE))
                return None
            token = message.github_token or self.settings.github_token
            if not token:
                await send(error_event(MissingCredentialError("github_token is required to push.")))
                return None
            return await self._start(
                session, send, PUSH, "Pushing project to Git...",
                self._push(session, session.generated_app, token, send),
            )

        if session.repo is None:
            await send(bot(NO_REPO_MESSAGE))
            return None
        token = message.vercel_token or self.settings.vercel_token
        if not token:
            await send(error_event(MissingCredentialError("vercel_token is required to deploy.")))
            return None
        return await self._start(
            session, send, DEPLOY, "Deploying project...",
            self._deploy(session.repo, token, send),
        )

    async def _start(
        self, session: Session, send: Send, action: str, notice: str, step: Awaitable[None]
    ) -> asyncio.Task:
        session.in_flight = action
        await send(bot(notice))
        task = asyncio.create_task(self._run(session, send, action, step))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, session: Session, send: Send, action: str, step: Awaitable[None]) -> None:
        try:
            await step
        except Exception as e:
            logger.error("%s failed: %s", action, e)
            await send(error_event(e))
        finally:
            session.in_flight = None

    async def _generate(self, session: Session, app_name: str, send: Send) -> None:
        app = await generate_step(self.generator, app_name)
        session.generated_app = app
        await send(bot(
            f'Generated "{app_name}" app successfully.',
            zip=base64.b64encode(app.archive).decode(),
        ))

    async def _push(self, session: Session, app: GeneratedApp, token: str, send: Send) -> None:
        result = await push_step(self.publisher, app, token)
        session.repo = RepoReference(owner=result.owner, name=result.name)
        await send(bot("Files pushed successfully.", link=result.html_url))

    async def _deploy(self, repo: RepoReference, token: str, send: Send) -> None:
        url = await deploy_step(self.deployer, repo, token, self.settings.deploy_branch)
        await send(bot("App deployed successfully.", link=url or None))
