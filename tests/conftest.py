"""Shared pytest configuration — loads .env and provides fake remote collaborators."""

from __future__ import annotations

import asyncio

import pytest
from dotenv import load_dotenv

from src.config import Settings
from src.pipeline.dispatcher import CommandDispatcher
from src.tools.archive import GeneratedFile
from src.tools.github_publisher import RepoPublishResult

# Load .env so that skip guards like `os.getenv("GITHUB_TOKEN")`
# see the real values (not just shell-exported vars).
load_dotenv()


SAMPLE_FILES = [
    GeneratedFile("app/page.tsx", '"use client"\nexport default function Page() { return <main/> }\n'),
    GeneratedFile("components/TodoList.tsx", "export function TodoList() { return null }\n"),
    GeneratedFile("public/logo.png", "iVBORw0KGgo=", "base64"),
]


class FakeGenerator:
    def __init__(self, files=None, error: Exception | None = None) -> None:
        self.files = list(files if files is not None else SAMPLE_FILES)
        self.error = error
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None

    async def generate(self, app_name: str):
        self.calls.append(app_name)
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.files


class FakePublisher:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, list, str]] = []

    async def publish(self, name, files, token):
        self.calls.append((name, files, token))
        if self.error:
            raise self.error
        return RepoPublishResult(
            full_name=f"octo/{name}",
            head_commit_sha="abc1234",
            html_url=f"https://github.com/octo/{name}",
        )


class FakeDeployer:
    def __init__(self, url: str = "https://todo.vercel.app", error: Exception | None = None) -> None:
        self.url = url
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    async def deploy(self, repo_full_name, token, branch="main"):
        self.calls.append((repo_full_name, token, branch))
        if self.error:
            raise self.error
        return self.url


@pytest.fixture()
def settings():
    return Settings(
        anthropic_api_key="sk-test-dummy",
        smallest_api_key="",
        github_token="",
        vercel_token="",
        auto_tts_on_final=False,
        allowed_origins="http://localhost:3000",
    )


@pytest.fixture()
def sample_files():
    return list(SAMPLE_FILES)


@pytest.fixture()
def fake_generator():
    return FakeGenerator()


@pytest.fixture()
def fake_publisher():
    return FakePublisher()


@pytest.fixture()
def fake_deployer():
    return FakeDeployer()


@pytest.fixture()
def dispatcher(fake_generator, fake_publisher, fake_deployer, settings):
    return CommandDispatcher(fake_generator, fake_publisher, fake_deployer, settings)
