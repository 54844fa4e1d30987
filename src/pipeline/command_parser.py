"""Command parser — classifies a chat command into a pipeline action."""

from __future__ import annotations

import re
from dataclasses import dataclass

GENERATE = "generate"
PUSH = "push"
DEPLOY = "deploy"
UNRECOGNIZED = "unrecognized"

VALID_ACTIONS = {GENERATE, PUSH, DEPLOY, UNRECOGNIZED}

GENERATE_PATTERN = re.compile(
    r"(?:create|generate|build)\s+(?:me\s+an?\s+)?([\w\s-]+?)\s+app", re.IGNORECASE
)
PUSH_PATTERN = re.compile(r"\b(?:push|github)\b", re.IGNORECASE)
DEPLOY_PATTERN = re.compile(r"\bdeploy\b", re.IGNORECASE)


@dataclass(frozen=True)
class Command:
    action: str
    app_name: str | None = None


def parse_command(text: str) -> Command:
    """Map *text* to exactly one action; generate is checked before push and deploy.

    >>> parse_command("Build me a todo list app")
    Command(action='generate', app_name='todo list')
    """
    text = text or ""
    match = GENERATE_PATTERN.search(text)
    if match and match.group(1).strip():
        return Command(GENERATE, match.group(1).strip())
    if PUSH_PATTERN.search(text):
        return Command(PUSH)
    if DEPLOY_PATTERN.search(text):
        return Command(DEPLOY)
    return Command(UNRECOGNIZED)
