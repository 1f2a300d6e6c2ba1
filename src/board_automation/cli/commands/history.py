"""Execution ledger history command."""

from __future__ import annotations

import argparse
import asyncio

from rich.console import Console
from rich.table import Table

from ...automation import ExecutionRecord, ExecutionStatus, SQLLedgerStore
from ..base import configure_logging, load_config, logger

STATUS_STYLES = {
    ExecutionStatus.PENDING: "[yellow]pending[/]",
    ExecutionStatus.COMPLETED: "[green]completed[/]",
    ExecutionStatus.FAILED: "[red]failed[/]",
}


async def _query(store: SQLLedgerStore, args: argparse.Namespace) -> list[ExecutionRecord]:
    if args.rule:
        return await store.list_for_rule(args.rule, args.limit)
    if args.entity:
        return await store.list_for_entity(args.entity, args.limit)
    return await store.list_for_scope(args.scope, args.limit)


def cmd_history(args: argparse.Namespace) -> int:
    """Show ledger entries for a rule, entity or board, newest first.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    configure_logging(args, config)

    database_url = args.database or config.ledger.database_url
    if not database_url:
        print("Error: no ledger database configured (pass --database or set ledger.database_url)")
        return 1

    store = SQLLedgerStore(database_url)
    try:
        records = asyncio.run(_query(store, args))
    except Exception as e:
        logger.error("Error reading execution history: %s", e, exc_info=True)
        print(f"Error: {e}")
        return 1
    finally:
        store.dispose()

    target = args.rule or args.entity or args.scope
    console = Console()
    if not records:
        console.print(f"[yellow]No executions recorded for {target}.[/]")
        return 0

    table = Table(title=f"Execution History: {target}")
    table.add_column("Started", style="dim")
    table.add_column("Rule", style="cyan")
    table.add_column("Entity")
    table.add_column("Action", style="magenta")
    table.add_column("Status")
    table.add_column("Message", style="green")
    for record in records:
        table.add_row(
            record.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.rule_name,
            record.entity_id or "-",
            record.action,
            STATUS_STYLES.get(record.status, record.status.value),
            record.error or record.message,
        )
    console.print(table)
    return 0
