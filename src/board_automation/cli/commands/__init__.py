"""CLI command handlers package."""

from .actions import cmd_actions
from .history import cmd_history
from .run import cmd_dry_run, cmd_process

__all__ = [
    "cmd_actions",
    "cmd_dry_run",
    "cmd_history",
    "cmd_process",
]
