"""
Configuration management for kvtables.

All configuration is done via environment variables; explicit arguments
to open_database() take precedence over them. This module provides
typed configuration classes with validation and the logging setup.

Invariants:
    - All settings have sensible defaults for local development
    - The in-memory backend needs no configuration at all

Environment variables:
    KVTABLES_BACKEND                 memory | sqlite (default memory)
    KVTABLES_PATH                    SQLite file (default kvtables.db)
    KVTABLES_SQLITE_WAL_MODE         true | false (default true)
    KVTABLES_SQLITE_BUSY_TIMEOUT_MS  default 5000
    LOG_LEVEL                        default INFO
    LOG_FORMAT                       json | text (default text)

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - List new variables above
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

import json_log_formatter

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported key-value store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class StorageConfig:
    """Store configuration.

    Attributes:
        backend: Which store backend to use
        path: SQLite database file (sqlite backend only)
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StoreBackend = StoreBackend.MEMORY
    path: str = "kvtables.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If KVTABLES_BACKEND names an unknown backend
        """
        backend_str = os.getenv("KVTABLES_BACKEND", "memory").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid KVTABLES_BACKEND '{backend_str}'. Must be one of: memory, sqlite"
            )

        return cls(
            backend=backend,
            path=os.getenv("KVTABLES_PATH", "kvtables.db"),
            wal_mode=os.getenv("KVTABLES_SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("KVTABLES_SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """Complete database configuration.

    Attributes:
        storage: Store configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage.backend == StoreBackend.SQLITE and not self.storage.path:
            raise ValueError("KVTABLES_PATH is required when KVTABLES_BACKEND=sqlite")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("KVTABLES_SQLITE_BUSY_TIMEOUT_MS must be >= 0")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Database configuration loaded",
            extra={
                "backend": self.storage.backend.value,
                "path": self.storage.path
                if self.storage.backend == StoreBackend.SQLITE
                else None,
                "wal_mode": self.storage.wal_mode,
                "log_level": self.observability.log_level,
            },
        )


def setup_logging(config: DatabaseConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Database configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
