"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./data/artshelf.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")
    pool_pre_ping: bool = Field(default=True)
    # Pool options only apply to PostgreSQL, SQLite ignores them
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=3600, ge=-1)
    # Hey future me - create_tables is handy for dev and tests. Production deployments
    # run "alembic upgrade head" and set DATABASE_CREATE_TABLES=false.
    create_tables: bool = Field(default=True)


class StorageSettings(BaseSettings):
    """Filesystem locations."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    scan_path: Path = Field(
        default=Path("./data/library"),
        description="Root of the artist/artwork directory tree",
    )


class ScannerSettings(BaseSettings):
    """Directory scanner tuning."""

    model_config = SettingsConfigDict(env_prefix="SCANNER_", extra="ignore")

    batch_size: int = Field(
        default=100, ge=1, description="Artworks persisted per catalog transaction"
    )
    concurrency: int = Field(
        default=8, ge=1, description="Artwork directories inspected at the same time"
    )
    # delete = drop catalog rows whose directory vanished, flag = stamp missing_since
    removal_policy: Literal["delete", "flag"] = Field(default="delete")
    cancel_poll_interval: float = Field(
        default=0.5, ge=0, description="Seconds between job status reads"
    )


class ProgressSettings(BaseSettings):
    """Progress streaming settings."""

    model_config = SettingsConfigDict(env_prefix="PROGRESS_", extra="ignore")

    persist_interval_ms: int = Field(
        default=1000, ge=0, description="Minimum gap between job progress writes"
    )
    heartbeat_seconds: float = Field(
        default=15.0, gt=0, description="Heartbeat interval for live streams"
    )


class ObservabilitySettings(BaseSettings):
    """Logging and shutdown settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_", extra="ignore")

    log_json_format: bool = Field(
        default=False, description="Emit JSON logs (recommended for production)"
    )
    shutdown_timeout: float = Field(
        default=10.0, gt=0, description="Seconds running jobs get to stop on shutdown"
    )


class Settings(BaseSettings):
    """Top-level settings object.

    Each concern lives in its own nested settings class with its own env prefix,
    so ``SCANNER_BATCH_SIZE=50`` tunes the scanner without touching anything else.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="artshelf")
    log_level: str = Field(default="INFO")
    debug: bool = Field(default=False)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Accept any case, store upper case."""
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite database file path, or None for other backends.

        In-memory databases also return None since there is no file to create.
        """
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path == ":memory:" or path.startswith(":memory:"):
            return None
        return Path(path)

    def ensure_directories(self) -> None:
        """Create the scan root and the SQLite parent directory if missing."""
        self.storage.scan_path.mkdir(parents=True, exist_ok=True)
        db_path = self._get_sqlite_db_path()
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Return the cached process-wide settings."""
    return Settings()
