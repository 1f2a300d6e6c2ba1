"""Action type listing command."""

from __future__ import annotations

import argparse
import json

from rich.console import Console
from rich.table import Table

from ...automation.actions import (
    ActionHandler,
    AICompletionHandler,
    DocumentIntelligenceHandler,
    NotificationHandler,
    TriggerWebhookHandler,
    create_default_registry,
)


def _category(handler: ActionHandler) -> str:
    if isinstance(handler, DocumentIntelligenceHandler):
        return "document intelligence"
    if isinstance(handler, AICompletionHandler):
        return "ai"
    if isinstance(handler, NotificationHandler | TriggerWebhookHandler):
        return "notification"
    return "mutation"


def cmd_actions(args: argparse.Namespace) -> int:
    """List every action type the default registry can dispatch.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    registry = create_default_registry()
    rows = []
    for action_type in registry.supported_types():
        handler = registry.get(action_type)
        rows.append(
            {
                "type": action_type,
                "category": _category(handler),
                "description": handler.describe({}, None),
            }
        )

    if args.json:
        print(json.dumps(rows, indent=2))
        return 0

    console = Console()
    table = Table(title=f"Action Types ({len(rows)})")
    table.add_column("Type", style="cyan")
    table.add_column("Category", style="magenta")
    table.add_column("Description", style="green")
    for row in rows:
        table.add_row(row["type"], row["category"], row["description"])
    console.print(table)
    console.print("[dim]Any other action type runs as a successful no-op stub.[/]")
    return 0
