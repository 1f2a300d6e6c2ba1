"""Base utilities and shared imports for the CLI module."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..core import EngineConfig, get_logger, setup_logging
from ..providers import InMemoryEntityStore

logger = get_logger("cli")


def load_config(path: str | None) -> EngineConfig:
    """Load engine configuration from YAML or JSON, or defaults when no path."""
    if not path:
        return EngineConfig()
    if Path(path).suffix.lower() == ".json":
        return EngineConfig.from_json(path)
    return EngineConfig.from_yaml(path)


def load_fixtures(path: str) -> InMemoryEntityStore:
    """Build an in-memory store from a YAML (or JSON) fixtures file."""
    fixtures_path = Path(path)
    if not fixtures_path.exists():
        raise FileNotFoundError(f"Fixtures file not found: {fixtures_path}")
    with open(fixtures_path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Fixtures file must contain a mapping: {fixtures_path}")
    return InMemoryEntityStore.from_mapping(data)


def save_fixtures(store: InMemoryEntityStore, path: str) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(store.to_mapping(), handle, sort_keys=False, allow_unicode=True)


def parse_json_arg(value: str | None, what: str) -> Any:
    """Parse a JSON command-line argument, or ``@file`` holding JSON/YAML."""
    if value is None:
        return None
    if value.startswith("@"):
        with open(value[1:], encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON for {what}: {exc}") from exc


def configure_logging(args: argparse.Namespace, config: EngineConfig) -> None:
    logging_config = config.logging
    if getattr(args, "log_level", None):
        logging_config = logging_config.model_copy(update={"level": args.log_level.upper()})
    setup_logging(logging_config)


__all__ = [
    "Console",
    "EngineConfig",
    "Table",
    "__version__",
    "configure_logging",
    "load_config",
    "load_fixtures",
    "logger",
    "parse_json_arg",
    "save_fixtures",
]
