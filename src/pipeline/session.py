"""Per-connection session state for the generate → push → deploy pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GeneratedApp:
    name: str
    archive: bytes


@dataclass(frozen=True)
class RepoReference:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class Session:
    """Owned by one ``/ws/mcp`` connection and discarded when it closes.

    Only the dispatcher writes to it, and only after a step succeeds.
    """

    generated_app: GeneratedApp | None = None
    repo: RepoReference | None = None
    in_flight: str | None = None
