"""Repository publisher — pushes a generated file set to a new GitHub repo.

PyGithub is synchronous, so every API call runs through
``asyncio.to_thread``. Blob uploads are issued concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from github import Auth, Github, GithubException, InputGitTreeElement

from src.errors import BackendNotReadyError, PublishError
from src.tools.archive import GeneratedFile

if TYPE_CHECKING:
    from github.Repository import Repository

logger = logging.getLogger("sanka")

COMMIT_MESSAGE = "Initial project push"


@dataclass(frozen=True)
class RepoPublishResult:
    full_name: str
    head_commit_sha: str
    html_url: str

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[1]


def repo_name_for(app_name: str) -> str:
    """GitHub-safe repository name for an app name ("Todo List" → "todo-list")."""
    slug = re.sub(r"[^a-z0-9._-]+", "-", app_name.strip().lower()).strip("-.")
    return slug or "generated-app"


def _github_client(token: str) -> Github:
    return Github(auth=Auth.Token(token))


class GitHubPublisher:
    """Create-or-reuse → wait for the default branch → commit-tree publish."""

    def __init__(
        self,
        client_factory: Callable[[str], Any] = _github_client,
        ref_attempts: int = 8,
        ref_delay: float = 1.0,
    ) -> None:
        self.client_factory = client_factory
        self.ref_attempts = ref_attempts
        self.ref_delay = ref_delay

    async def publish(
        self, name: str, files: list[GeneratedFile], token: str
    ) -> RepoPublishResult:
        if not files:
            raise PublishError("Nothing to push: the file list is empty.")

        gh = self.client_factory(token)
        try:
            user = await asyncio.to_thread(gh.get_user)
            # AuthenticatedUser is lazy; reading login performs the request
            login = await asyncio.to_thread(getattr, user, "login")
            repo, created = await self._create_or_reuse(gh, user, login, name)
            branch = repo.default_branch or "main"

            ref = await self._wait_for_ref(repo, branch)
            head = await asyncio.to_thread(repo.get_git_commit, ref.object.sha)

            blobs = await asyncio.gather(
                *(
                    asyncio.to_thread(repo.create_git_blob, f.content, f.encoding)
                    for f in files
                )
            )
            elements = [
                InputGitTreeElement(path=f.path, mode="100644", type="blob", sha=blob.sha)
                for f, blob in zip(files, blobs)
            ]
            # A fresh repo's base tree only holds the auto-init placeholder
            if created:
                tree = await asyncio.to_thread(repo.create_git_tree, elements)
            else:
                tree = await asyncio.to_thread(repo.create_git_tree, elements, head.tree)

            commit = await asyncio.to_thread(
                repo.create_git_commit, COMMIT_MESSAGE, tree, [head]
            )
            await asyncio.to_thread(ref.edit, commit.sha, True)
        except PublishError:
            raise
        except GithubException as e:
            raise PublishError(
                f"GitHub API error ({e.status}): {_github_message(e)}", status=e.status
            ) from e
        except Exception as e:
            raise PublishError(f"GitHub push failed: {e}") from e
        finally:
            await asyncio.to_thread(gh.close)

        logger.info("Pushed %d files to %s@%s", len(files), repo.full_name, commit.sha[:7])
        return RepoPublishResult(
            full_name=repo.full_name,
            head_commit_sha=commit.sha,
            html_url=repo.html_url or f"https://github.com/{repo.full_name}",
        )

    async def _create_or_reuse(
        self, gh: Any, user: Any, login: str, name: str
    ) -> tuple["Repository", bool]:
        try:
            repo = await asyncio.to_thread(
                user.create_repo, name, private=False, auto_init=True
            )
            logger.info("Created repository %s", repo.full_name)
            return repo, True
        except GithubException as e:
            if e.status != 422:
                raise
            logger.warning("Repository %s/%s already exists — reusing it", login, name)
            repo = await asyncio.to_thread(gh.get_repo, f"{login}/{name}")
            return repo, False

    async def _wait_for_ref(self, repo: "Repository", branch: str):
        """Resolve ``heads/<branch>``, retrying while the host provisions the repo."""
        last: BackendNotReadyError | None = None
        for attempt in range(1, self.ref_attempts + 1):
            try:
                return await asyncio.to_thread(repo.get_git_ref, f"heads/{branch}")
            except GithubException as e:
                last = BackendNotReadyError(
                    f"Branch '{branch}' not ready ({e.status})", attempt=attempt
                )
                logger.warning(
                    "Waiting for %s:%s (attempt %d/%d)",
                    repo.full_name, branch, attempt, self.ref_attempts,
                )
            if attempt < self.ref_attempts:
                await asyncio.sleep(self.ref_delay)

        raise PublishError(
            f"Repository backend not ready after {self.ref_attempts} attempts: {last.message}"
        ) from last


def _github_message(e: GithubException) -> str:
    data = e.data
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return str(data)
