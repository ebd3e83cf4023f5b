"""
Configuration management for SendConf Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The system send configuration id is fixed at startup and never changes
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Changing SYSTEM_SEND_CONFIGURATION_ID on an existing database makes the
      previous system record deletable
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_filename: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/sendconf"
    db_filename: str = "sendconf.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/sendconf"),
            db_filename=os.getenv("DB_FILENAME", "sendconf.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class SystemConfig:
    """Well-known records created at bootstrap.

    Attributes:
        send_configuration_id: Id of the undeletable system send configuration
        admin_username: Username of the bootstrap administrator
    """

    send_configuration_id: int = 1
    admin_username: str = "admin"

    @classmethod
    def from_env(cls) -> SystemConfig:
        """Load configuration from environment variables."""
        return cls(
            send_configuration_id=int(os.getenv("SYSTEM_SEND_CONFIGURATION_ID", "1")),
            admin_username=os.getenv("ADMIN_USERNAME", "admin"),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        bind_address: Address to bind HTTP server (host:port)
        cors_origins: Allowed CORS origins
        default_page_size: Listing page size when the client sends none
        max_page_size: Upper bound on listing page size
    """

    bind_address: str = "0.0.0.0:8081"
    cors_origins: tuple[str, ...] = ("*",)
    default_page_size: int = 50
    max_page_size: int = 200

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            bind_address=os.getenv("HTTP_BIND", "0.0.0.0:8081"),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            default_page_size=int(os.getenv("LISTING_DEFAULT_LIMIT", "50")),
            max_page_size=int(os.getenv("LISTING_MAX_LIMIT", "200")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Local storage configuration
        system: Well-known record configuration
        http: HTTP server configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    system: SystemConfig = field(default_factory=SystemConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            system=SystemConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.system.send_configuration_id < 1:
            raise ValueError("SYSTEM_SEND_CONFIGURATION_ID must be a positive integer")

        if not self.system.admin_username:
            raise ValueError("ADMIN_USERNAME must not be empty")

        if ":" not in self.http.bind_address:
            raise ValueError(f"HTTP_BIND must be host:port, got '{self.http.bind_address}'")

        if not 0 < self.http.default_page_size <= self.http.max_page_size:
            raise ValueError("LISTING_DEFAULT_LIMIT must be between 1 and LISTING_MAX_LIMIT")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(f"Invalid LOG_FORMAT '{self.observability.log_format}'")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": str(self.storage.db_path),
                "wal_mode": self.storage.wal_mode,
                "http_bind": self.http.bind_address,
                "system_send_configuration_id": self.system.send_configuration_id,
                "log_level": self.observability.log_level,
            },
        )
