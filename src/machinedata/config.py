"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
with an optional config.yaml providing defaults that env vars override.
"""

import os
import yaml
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/machinedata
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class DatabaseSettings(BaseSettings):
    """Record store configuration."""

    path: Path = Field(
        default=Path("machine_data.db"),
        validation_alias=AliasChoices("MACHINEDATA_DATABASE_PATH", "DB_PATH"),
        description="SQLite database file",
    )
    timeout_seconds: float = Field(default=5.0, gt=0, description="Upper bound for any storage operation")
    echo: bool = Field(default=False, description="Echo SQL statements")

    @property
    def url(self) -> str:
        """SQLAlchemy async URL for the database file."""
        return f"sqlite+aiosqlite:///{self.path.expanduser().resolve()}"

    model_config = SettingsConfigDict(env_prefix="MACHINEDATA_DATABASE_", populate_by_name=True)


class IngestionSettings(BaseSettings):
    """Payload acceptance policy."""

    mode: Literal["flexible", "strict"] = Field(
        default="flexible",
        description="flexible: heuristic extraction; strict: require machineId, timestamp, data",
    )
    max_payload_bytes: int = Field(default=10 * 1024 * 1024, gt=0, description="Maximum request body (10MB)")

    @field_validator("mode", mode="before")
    def normalize_mode(cls, v: Any) -> Any:
        """Accept mode names in any case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    model_config = SettingsConfigDict(env_prefix="MACHINEDATA_INGESTION_")


class RateLimitSettings(BaseSettings):
    """Admission gate configuration."""

    machine_max_requests: int = Field(default=1, ge=1, description="Requests per window per machine")
    machine_window_seconds: int = Field(default=10, ge=1, description="Per-machine window length")
    global_max_requests: int = Field(default=100, ge=1, description="Requests per window across all callers")
    global_window_seconds: int = Field(default=60, ge=1, description="Global window length")

    model_config = SettingsConfigDict(env_prefix="MACHINEDATA_RATE_LIMIT_")


class QuerySettings(BaseSettings):
    """Pagination defaults for the read endpoints."""

    default_limit: int = Field(default=100, ge=1)
    machine_default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=1000, ge=1)

    model_config = SettingsConfigDict(env_prefix="MACHINEDATA_QUERY_")


class RetentionSettings(BaseSettings):
    """Retention sweep configuration."""

    days: int = Field(default=30, ge=0, description="Default age threshold for cleanup")
    sweep_interval_seconds: int = Field(
        default=0,
        ge=0,
        description="Background sweep period; 0 disables the periodic sweep",
    )

    model_config = SettingsConfigDict(env_prefix="MACHINEDATA_RETENTION_")


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(
        default=3000,
        validation_alias=AliasChoices("MACHINEDATA_PORT", "PORT"),
        description="Server port",
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)

    model_config = SettingsConfigDict(
        env_prefix="MACHINEDATA_",
        case_sensitive=False,
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    settings = Settings()
    return settings


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "MACHINEDATA_HOST",
        ("server", "port"): "MACHINEDATA_PORT",
        ("server", "debug"): "MACHINEDATA_DEBUG",
        ("server", "log_level"): "MACHINEDATA_LOG_LEVEL",
        ("database", "path"): "MACHINEDATA_DATABASE_PATH",
        ("database", "timeout_seconds"): "MACHINEDATA_DATABASE_TIMEOUT_SECONDS",
        ("ingestion", "mode"): "MACHINEDATA_INGESTION_MODE",
        ("ingestion", "max_payload_bytes"): "MACHINEDATA_INGESTION_MAX_PAYLOAD_BYTES",
        ("rate_limit", "machine_max_requests"): "MACHINEDATA_RATE_LIMIT_MACHINE_MAX_REQUESTS",
        ("rate_limit", "machine_window_seconds"): "MACHINEDATA_RATE_LIMIT_MACHINE_WINDOW_SECONDS",
        ("rate_limit", "global_max_requests"): "MACHINEDATA_RATE_LIMIT_GLOBAL_MAX_REQUESTS",
        ("rate_limit", "global_window_seconds"): "MACHINEDATA_RATE_LIMIT_GLOBAL_WINDOW_SECONDS",
        ("query", "default_limit"): "MACHINEDATA_QUERY_DEFAULT_LIMIT",
        ("query", "machine_default_limit"): "MACHINEDATA_QUERY_MACHINE_DEFAULT_LIMIT",
        ("query", "max_limit"): "MACHINEDATA_QUERY_MAX_LIMIT",
        ("retention", "days"): "MACHINEDATA_RETENTION_DAYS",
        ("retention", "sweep_interval_seconds"): "MACHINEDATA_RETENTION_SWEEP_INTERVAL_SECONDS",
    }

    # PORT and DB_PATH are honoured as aliases, so they count as already set
    aliases = {
        "MACHINEDATA_PORT": "PORT",
        "MACHINEDATA_DATABASE_PATH": "DB_PATH",
    }

    for (section, key), env_var in mappings.items():
        if env_var in os.environ or aliases.get(env_var, env_var) in os.environ:
            continue
        value = (config_data.get(section) or {}).get(key)
        if value is not None:
            os.environ[env_var] = str(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
