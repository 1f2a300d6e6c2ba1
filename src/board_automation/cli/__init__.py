"""CLI module for the board automation engine.

This module provides the command-line interface for processing events,
dry-running rules and inspecting the execution ledger.
"""

from __future__ import annotations

from collections.abc import Sequence

from .base import (
    Console,
    Table,
    __version__,
    configure_logging,
    load_config,
    load_fixtures,
    logger,
    parse_json_arg,
    save_fixtures,
)
from .commands import cmd_actions, cmd_dry_run, cmd_history, cmd_process
from .parser import build_parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Optional sequence of CLI arguments (without the program name).

    Returns:
        Process exit code. 0 for success.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        raise SystemExit(0)

    handlers = {
        "actions": cmd_actions,
        "process": cmd_process,
        "dry-run": cmd_dry_run,
        "history": cmd_history,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


__all__ = [
    # Main entry point
    "main",
    # Parser
    "build_parser",
    # Base utilities
    "Console",
    "Table",
    "__version__",
    "configure_logging",
    "load_config",
    "load_fixtures",
    "logger",
    "parse_json_arg",
    "save_fixtures",
    # Command handlers
    "cmd_actions",
    "cmd_dry_run",
    "cmd_history",
    "cmd_process",
]
