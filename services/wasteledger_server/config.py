"""
Configuration management for the waste ledger server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - LEDGER_ADMIN has no default: the administrator must be named explicitly
    - Record limits are positive integers

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Lowering a record limit never invalidates stored records, but
      entries already above the new limit stop accepting appends
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_name: Database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/wasteledger"
    db_name: str = "ledger.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/wasteledger"),
            db_name=os.getenv("LEDGER_DB_NAME", "ledger.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class LimitsConfig:
    """Per-entry record limits.

    Attributes:
        max_versions: Maximum versions per entry
        max_tags: Maximum tags in a category
        max_collaborators: Maximum distinct collaborators per entry
        max_note_length: Maximum compliance note length (characters)
        max_description_length: Maximum entry description length (characters)
    """

    max_versions: int = 10
    max_tags: int = 15
    max_collaborators: int = 5
    max_note_length: int = 500
    max_description_length: int = 1000

    @classmethod
    def from_env(cls) -> LimitsConfig:
        """Load configuration from environment variables."""
        return cls(
            max_versions=int(os.getenv("MAX_VERSIONS", "10")),
            max_tags=int(os.getenv("MAX_TAGS", "15")),
            max_collaborators=int(os.getenv("MAX_COLLABORATORS", "5")),
            max_note_length=int(os.getenv("MAX_NOTE_LENGTH", "500")),
            max_description_length=int(os.getenv("MAX_DESCRIPTION_LENGTH", "1000")),
        )

    def validate(self) -> None:
        """Raise ValueError unless every limit is positive."""
        for f in fields(self):
            value = getattr(self, f.name)
            if value <= 0:
                raise ValueError(f"{f.name.upper()} must be positive, got {value}")


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins
    """

    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
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
        admin: Ledger administrator identity (the only caller allowed to pause)
        storage: Local storage configuration
        limits: Per-entry record limits
        http: HTTP server configuration
        observability: Logging configuration
    """

    admin: str = ""
    storage: StorageConfig = field(default_factory=StorageConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            admin=os.getenv("LEDGER_ADMIN", ""),
            storage=StorageConfig.from_env(),
            limits=LimitsConfig.from_env(),
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
        if not self.admin:
            raise ValueError("LEDGER_ADMIN is required")

        self.limits.validate()

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "admin": self.admin,
                "data_dir": self.storage.data_dir,
                "db_name": self.storage.db_name,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "max_versions": self.limits.max_versions,
                "max_tags": self.limits.max_tags,
                "max_collaborators": self.limits.max_collaborators,
                "log_level": self.observability.log_level,
            },
        )
