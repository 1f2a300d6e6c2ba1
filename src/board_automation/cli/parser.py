"""CLI argument parser."""

from __future__ import annotations

import argparse

from .. import __version__


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="board-automation",
        description="Board automation engine - match events to rules and run their actions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List the registered action types
  board-automation actions

  # Process an event against a fixtures file
  board-automation process -f board.yaml -e '{"type": "status_changed", "boardId": "b1",
      "taskId": "t1", "field": "status", "newValue": "stuck"}'

  # Project a stored rule over the board's items without running it
  board-automation dry-run -f board.yaml -r escalate-stuck

  # Show ledger history for a rule
  board-automation -c config.yaml history --rule escalate-stuck
        """,
    )

    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s v{__version__}",
        help="Show program's version number and exit",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to engine configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Actions command
    actions_parser = subparsers.add_parser("actions", help="List registered action types")
    actions_parser.add_argument(
        "--json", action="store_true", help="Print the action types as JSON"
    )

    # Process command
    process_parser = subparsers.add_parser("process", help="Process an event against fixtures")
    process_parser.add_argument(
        "-f", "--fixtures", required=True, help="YAML file with rules, groups and entities"
    )
    process_parser.add_argument(
        "-e",
        "--event",
        required=True,
        help="Event as JSON, or @path to a JSON/YAML file",
    )
    process_parser.add_argument(
        "--save", action="store_true", help="Write the mutated fixtures back to the file"
    )
    process_parser.add_argument(
        "--with-ai",
        action="store_true",
        help="Wire the configured completion model for AI actions",
    )
    process_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    # Dry-run command
    dry_run_parser = subparsers.add_parser(
        "dry-run", help="Project a rule over sampled entities without running it"
    )
    dry_run_parser.add_argument(
        "-f", "--fixtures", required=True, help="YAML file with rules, groups and entities"
    )
    rule_group = dry_run_parser.add_mutually_exclusive_group(required=True)
    rule_group.add_argument("-r", "--rule", help="Id of a rule in the fixtures file")
    rule_group.add_argument(
        "--candidate", help="Candidate rule as JSON, or @path to a JSON/YAML file"
    )
    dry_run_parser.add_argument(
        "-s", "--scope", default=None, help="Board to sample (default: the rule's board)"
    )
    dry_run_parser.add_argument(
        "-n", "--sample-size", type=int, default=None, help="Number of entities to sample"
    )
    dry_run_parser.add_argument(
        "--metadata", default=None, help="Event metadata as JSON for metadata conditions"
    )
    dry_run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    # History command
    history_parser = subparsers.add_parser("history", help="Query the execution ledger")
    history_parser.add_argument(
        "--database",
        default=None,
        help="SQLAlchemy URL of the ledger (default: ledger.database_url from config)",
    )
    target_group = history_parser.add_mutually_exclusive_group(required=True)
    target_group.add_argument("--rule", help="Show executions of a rule")
    target_group.add_argument("--entity", help="Show executions for an entity")
    target_group.add_argument("--scope", help="Show executions in a board")
    history_parser.add_argument(
        "-n", "--limit", type=int, default=20, help="Maximum records to show (default: 20)"
    )

    return parser
