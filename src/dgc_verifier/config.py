"""
Configuration — typed, validated settings loaded from environment/.env.

Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated through env_nested_delimiter="__", so
GATEWAY__BASE_URL maps to gateway.base_url, SYNC__STALENESS_HOURS to
sync.staleness_hours, and so on.

The database section is only required when the PostgreSQL store backend
is selected; the in-memory backend runs without it.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env lives at the project root, two levels above this file
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class StoreBackend(StrEnum):
    POSTGRES = "postgres"
    MEMORY = "memory"


class GatewaySettings(BaseModel):
    """Revocation-list service endpoints."""

    base_url: str = Field(description="Base URL of the DRL service")
    status_path: str = Field(default="/drl/check", description="DRL status endpoint path")
    chunk_path: str = Field(default="/drl", description="DRL chunk endpoint path")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection configuration.

    Accepts either a full connection string via DATABASE__DSN or individual
    components (host, port, name, username, password). The DSN wins when
    both are given.
    """

    dsn: SecretStr | None = Field(
        default=None,
        description="Full PostgreSQL connection string (overrides individual fields)",
    )
    host: str | None = Field(default=None, description="PostgreSQL host")
    port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    name: str | None = Field(default=None, description="PostgreSQL database name")
    username: str | None = Field(default=None, description="PostgreSQL username")
    password: SecretStr | None = Field(default=None, description="PostgreSQL password")

    @model_validator(mode="after")
    def resolve_dsn(self) -> DatabaseSettings:
        """Build `dsn` from the components when no full DSN was given."""
        if self.dsn is not None:
            return self
        missing = [f for f, v in [
            ("DATABASE__HOST", self.host),
            ("DATABASE__NAME", self.name),
            ("DATABASE__USERNAME", self.username),
            ("DATABASE__PASSWORD", self.password),
        ] if not v]
        if missing:
            raise ValueError("Set DATABASE__DSN or provide all of: " + ", ".join(missing))
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        if self.dsn is None:
            raise ValueError("No PostgreSQL DSN configured")
        return self.dsn.get_secret_value()


class SchedulerSettings(BaseModel):
    """Periodic sync trigger: every `interval_seconds`, randomly delayed by up to `jitter_seconds`."""

    interval_seconds: int = Field(default=60, ge=1)
    jitter_seconds: int = Field(default=5, ge=0)


class SyncSettings(BaseModel):
    automatic_max_size_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=0,
        description="Downloads above this size wait for user confirmation",
    )
    staleness_hours: int = Field(
        default=24,
        ge=0,
        description="Minimum age of the last completed sync before the timer syncs again",
    )


class RulesSettings(BaseModel):
    settings_file: Path = Field(description="JSON file with the [{name, type, value}] settings rows")
    home_country: str = Field(default="IT", min_length=2, max_length=2)

    @field_validator("home_country")
    @classmethod
    def upper_country(cls, value: str) -> str:
        return value.upper()


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first): environment variables, .env file,
    defaults.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    gateway: GatewaySettings
    rules: RulesSettings
    store: StoreBackend = Field(default=StoreBackend.POSTGRES)
    database: DatabaseSettings | None = None
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())
    sync: SyncSettings = Field(default_factory=lambda: SyncSettings())

    http_timeout_seconds: int = Field(default=60, ge=1)
    run_on_startup: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def database_for_postgres(self) -> AppSettings:
        if self.store is StoreBackend.POSTGRES and self.database is None:
            raise ValueError("store=postgres requires DATABASE__DSN or DATABASE__* components")
        return self
