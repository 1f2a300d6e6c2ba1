"""Event processing and dry-run commands.

Both commands work against a fixtures file holding ``rules``, ``groups`` and
``entities`` (``tasks`` is accepted as an alias) which is loaded into an
in-memory entity store.
"""

from __future__ import annotations

import argparse
import asyncio
import json

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ...automation import AutomationEngine, AutomationError, DryRunResult, ExecutionResult
from ...providers import ActionProviders, InMemoryEntityStore
from ..base import configure_logging, load_config, load_fixtures, logger, parse_json_arg, save_fixtures


def _print_results(console: Console, results: list[ExecutionResult]) -> None:
    if not results:
        console.print("[yellow]No rules fired for this event.[/]")
        return

    table = Table(title=f"Execution Results ({len(results)})")
    table.add_column("Rule", style="cyan")
    table.add_column("Action", style="magenta")
    table.add_column("Depth", justify="right")
    table.add_column("Status")
    table.add_column("Message", style="green")
    for result in results:
        if not result.success:
            status = "[red]Failed[/]"
        elif result.skipped:
            status = "[yellow]Skipped[/]"
        else:
            status = "[green]OK[/]"
        table.add_row(
            result.rule_name, result.action, str(result.cascade_depth), status, result.message
        )
    console.print(table)


def cmd_process(args: argparse.Namespace) -> int:
    """Process one event against the rules in a fixtures file.

    Args:
        args: Parsed arguments

    Returns:
        Exit code (1 when the input is invalid or any rule failed)
    """
    try:
        config = load_config(args.config)
        configure_logging(args, config)
        store = load_fixtures(args.fixtures)
        event = parse_json_arg(args.event, "event")
        providers = ActionProviders.from_config(config, with_completion=args.with_ai)
        engine = AutomationEngine(store, providers, config)
        results = asyncio.run(engine.process_event(event))
    except (AutomationError, FileNotFoundError, ValueError) as e:
        logger.error("Error processing event: %s", e)
        print(f"Error: {e}")
        return 1

    if args.save:
        save_fixtures(store, args.fixtures)

    if args.json:
        print(json.dumps([result.model_dump(mode="json") for result in results], indent=2))
    else:
        console = Console()
        _print_results(console, results)
        outbox = providers.notifications
        if outbox is not None and len(outbox):
            console.print(f"[dim]{len(outbox)} notification(s) queued[/]")
        if args.save:
            console.print(f"[green]Fixtures saved to {args.fixtures}[/]")

    return 0 if all(result.success for result in results) else 1


async def _dry_run(
    store: InMemoryEntityStore, engine: AutomationEngine, args: argparse.Namespace
) -> DryRunResult:
    if args.rule:
        candidate = await store.get_automation_rule(args.rule)
        if candidate is None:
            raise ValueError(f"Automation rule not found: {args.rule}")
    else:
        candidate = parse_json_arg(args.candidate, "candidate rule")
        if not isinstance(candidate, dict):
            raise ValueError("Candidate rule must be a JSON object")

    scope_id = args.scope
    if scope_id is None:
        scope_id = (
            candidate.scope_id
            if not isinstance(candidate, dict)
            else candidate.get("scope_id") or candidate.get("boardId") or candidate.get("board_id")
        )
    if not scope_id:
        raise ValueError("No board to sample: pass --scope")

    metadata = parse_json_arg(args.metadata, "metadata")
    return await engine.dry_run_rule(candidate, scope_id, args.sample_size, metadata)


def _print_dry_run(console: Console, result: DryRunResult) -> None:
    console.print(
        Panel(
            f"[bold]Rule:[/] {result.rule_name} ({result.rule_id})\n"
            f"[bold]Board:[/] {result.scope_id}\n"
            f"[bold]Action:[/] {result.action_type}\n"
            f"[bold]Would fire:[/] {result.would_fire_count} of {result.sampled} sampled",
            title="Dry Run",
            border_style="blue",
        )
    )

    if result.predictions:
        table = Table(title="Predictions")
        table.add_column("Entity", style="cyan")
        table.add_column("Trigger")
        table.add_column("Fires")
        table.add_column("Failed Conditions", justify="right")
        table.add_column("Action", style="green")
        for prediction in result.predictions:
            table.add_row(
                prediction.entity_title or prediction.entity_id,
                "[green]yes[/]" if prediction.trigger_matched else "[dim]no[/]",
                "[green]yes[/]" if prediction.would_fire else "[red]no[/]",
                ", ".join(str(i) for i in prediction.failed_conditions) or "-",
                prediction.action_description or "-",
            )
        console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/] {warning}")


def cmd_dry_run(args: argparse.Namespace) -> int:
    """Project a rule over a board's entities without running it.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    try:
        config = load_config(args.config)
        configure_logging(args, config)
        store = load_fixtures(args.fixtures)
        engine = AutomationEngine(store, config=config)
        result = asyncio.run(_dry_run(store, engine, args))
    except (AutomationError, FileNotFoundError, ValueError) as e:
        logger.error("Error running dry run: %s", e)
        print(f"Error: {e}")
        return 1

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        _print_dry_run(Console(), result)
    return 0
