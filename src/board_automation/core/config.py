"""Configuration management for the board automation engine.

This module provides configuration models and loading functionality using Pydantic
for validation and type safety.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DOTENV_LOADED = False


def _load_env_once() -> None:
    """Load environment variables from a .env file exactly once."""

    global _DOTENV_LOADED
    if not _DOTENV_LOADED:
        load_dotenv()
        _DOTENV_LOADED = True


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data."""

    if isinstance(data, str):
        return os.path.expandvars(data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    log_file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")

    @field_validator("level")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        level = (value or "INFO").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return level


class CascadeConfig(BaseModel):
    """Limits applied to automation-caused event chains."""

    max_depth: int = Field(
        default=5,
        ge=0,
        description="Maximum number of times the engine re-enters itself for one originating event",
    )
    block_reentry: bool = Field(
        default=True,
        description="Prevent a rule from firing again on a chain it already fired on",
    )


class DispatchConfig(BaseModel):
    """How matched rules of a single event are dispatched."""

    mode: Literal["parallel", "sequential"] = Field(
        default="parallel",
        description="Dispatch matched rules concurrently or one after another",
    )


class LedgerConfig(BaseModel):
    """Execution ledger settings."""

    enabled: bool = Field(default=True, description="Write durable execution records")
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL for the durable ledger (in-memory ledger when unset)",
    )
    recent_capacity: int = Field(
        default=1000,
        ge=1,
        description="Capacity of the in-memory recent activity ring",
    )


class DryRunConfig(BaseModel):
    """Dry-run simulator settings."""

    sample_size: int = Field(default=25, ge=1, description="Default number of sampled entities")
    max_sample_size: int = Field(
        default=200, ge=1, description="Upper bound for requested sample sizes"
    )


class CompletionConfig(BaseModel):
    """Text-completion settings used by AI actions."""

    model: str = Field(
        default="openai:gpt-4o-mini",
        description="pydantic-ai model string (provider:model)",
    )
    system_prompt: str = Field(
        default="You are an assistant that helps legal teams keep their boards organised.",
        description="Default system prompt for AI actions",
    )
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=1024, ge=1, description="Maximum tokens per completion")
    timeout: float = Field(default=60.0, ge=1.0, description="Request timeout in seconds")


class DocumentIntelligenceConfig(BaseModel):
    """Remote case/document-intelligence service settings."""

    base_url: str = Field(default="", description="Service base URL")
    api_key: str = Field(default="", description="API key sent as bearer token and X-API-Key")
    enabled: bool = Field(default=False, description="Whether the integration is switched on")
    timeout: float = Field(default=15.0, ge=0.0, description="Default request timeout in seconds")
    client_name: str = Field(default="board-automation", description="Value of the X-Client header")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return (value or "").rstrip("/")


class HTTPClientConfig(BaseModel):
    """Default HTTP client configuration for outbound webhooks."""

    timeout: float = Field(default=10.0, ge=0.0, description="Default HTTP timeout")


class EngineConfig(BaseSettings):
    """Main configuration for the automation engine."""

    model_config = SettingsConfigDict(
        env_prefix="BOARD_AUTOMATION_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    cascade: CascadeConfig = Field(
        default_factory=CascadeConfig, description="Cascade guard configuration"
    )
    dispatch: DispatchConfig = Field(
        default_factory=DispatchConfig, description="Rule dispatch configuration"
    )
    ledger: LedgerConfig = Field(
        default_factory=LedgerConfig, description="Execution ledger configuration"
    )
    dry_run: DryRunConfig = Field(
        default_factory=DryRunConfig, description="Dry-run simulator configuration"
    )
    completion: CompletionConfig = Field(
        default_factory=CompletionConfig, description="AI completion configuration"
    )
    document_intelligence: DocumentIntelligenceConfig = Field(
        default_factory=DocumentIntelligenceConfig,
        description="Remote document-intelligence configuration",
    )
    http: HTTPClientConfig = Field(
        default_factory=HTTPClientConfig, description="Default HTTP client settings"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in config file: {exc}") from exc

        if not config_data:
            config_data = {}

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def from_json(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a JSON file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in config file: {exc}") from exc

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""

        return self.model_dump()
