"""Core modules for the board automation engine.

This package contains configuration management and logging utilities shared
by the engine, its providers and the command-line interface.
"""

from .config import (
    CascadeConfig,
    CompletionConfig,
    DispatchConfig,
    DocumentIntelligenceConfig,
    DryRunConfig,
    EngineConfig,
    HTTPClientConfig,
    LedgerConfig,
    LoggingConfig,
)
from .logger import get_logger, log_exception, setup_logging

__all__ = [
    "CascadeConfig",
    "CompletionConfig",
    "DispatchConfig",
    "DocumentIntelligenceConfig",
    "DryRunConfig",
    "EngineConfig",
    "HTTPClientConfig",
    "LedgerConfig",
    "LoggingConfig",
    "get_logger",
    "log_exception",
    "setup_logging",
]
