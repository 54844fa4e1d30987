from src.pipeline.command_parser import Command, parse_command
from src.pipeline.dispatcher import CommandDispatcher
from src.pipeline.session import GeneratedApp, RepoReference, Session

__all__ = [
    "Command",
    "CommandDispatcher",
    "GeneratedApp",
    "RepoReference",
    "Session",
    "parse_command",
]
