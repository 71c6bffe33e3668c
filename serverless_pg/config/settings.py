"""
Pydantic Settings for the Serverless PG Governor

This module provides strongly-typed configuration settings using Pydantic,
with support for environment variables and YAML configuration files.
"""

from typing import Any, Dict, Optional, Union
from pathlib import Path
import os

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_yaml import to_yaml_str

from ..serverless_pg_exceptions import ConfigurationError


class DatabaseSettings(BaseSettings):
    """
    Connection parameters handed through to the database driver.

    The governor never interprets these except for ``database``, which scopes
    the idle-process queries of the eviction policy. Environment variables use
    the libpq names (PGHOST, PGPORT, PGUSER, PGPASSWORD, PGDATABASE).
    """
    host: Optional[str] = Field(None, description="Hostname or IP address of the PostgreSQL server")
    port: int = Field(5432, description="Port number on which PostgreSQL is listening")
    user: Optional[str] = Field(None, description="Role used to authenticate")
    password: Optional[str] = Field(None, description="Password for the role (if required)")
    database: Optional[str] = Field(None, description="Database name; also scopes idle connection eviction")
    dsn: Optional[str] = Field(None, description="Full connection string; explicit fields take precedence")
    ssl: Optional[str] = Field(None, description="SSL mode passed to the driver (disable, prefer, require, ...)")
    connect_timeout: float = Field(60.0, gt=0, description="Connection timeout in seconds")
    command_timeout: Optional[float] = Field(None, gt=0, description="Default statement timeout in seconds")
    application_name: Optional[str] = Field("serverless-pg", description="application_name reported to pg_stat_activity")

    model_config = SettingsConfigDict(
        env_prefix="PG",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    def to_connect_kwargs(self) -> Dict[str, Any]:
        """Build the keyword arguments accepted by ``asyncpg.connect``."""
        kwargs: Dict[str, Any] = {
            "dsn": self.dsn,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "ssl": self.ssl,
            "timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
        }
        if self.application_name:
            kwargs["server_settings"] = {"application_name": self.application_name}
        return {key: value for key, value in kwargs.items() if value is not None}


# camelCase option names, as used in node-postgres style configs
_CAMEL_CASE_OPTIONS = {
    "automaticMaxConnections": "automatic_max_connections",
    "maxConnsFreqMs": "max_conns_freq_ms",
    "maxConnections": "max_connections",
    "maxIdleConnections": "max_idle_connections",
    "connUtilization": "conn_utilization",
    "capMs": "cap_ms",
    "baseMs": "base_ms",
    "retryDelayMs": "retry_delay_ms",
    "maxRetries": "max_retries",
    "connectionTimeoutMillis": "connect_timeout_ms",
    "applicationName": "application_name",
}


class GovernorSettings(BaseSettings):
    """
    Main settings class for the connection governor.

    Groups the passthrough database parameters with the tuning knobs of the
    three governor algorithms: capacity caching, idle eviction and
    reconnection backoff. Instances are immutable.

    Usage:
        # Load from environment variables and defaults
        settings = GovernorSettings()

        # Load from YAML file
        settings = GovernorSettings.from_yaml('governor.yaml')

        # Build from a flat, camelCase option mapping
        settings = GovernorSettings.from_options(host="db", maxConnections=50)
    """
    database: DatabaseSettings = Field(default_factory=DatabaseSettings,
                                       description="Passthrough database connection parameters")

    # Capacity discovery
    automatic_max_connections: bool = Field(False,
                                            description="Query SHOW max_connections instead of trusting max_connections")
    max_conns_freq_ms: int = Field(60000, ge=0,
                                   description="How long a discovered max_connections value stays fresh (ms)")
    max_connections: int = Field(100, gt=0,
                                 description="Server connection capacity used until (or unless) refreshed")

    # Idle eviction
    max_idle_connections: int = Field(10, gt=0,
                                      description="Upper bound on idle backends terminated per clean() call")
    conn_utilization: float = Field(0.8, gt=0, le=1,
                                    description="Fraction of capacity that idle backends may occupy before eviction")

    # Reconnection backoff
    cap_ms: Optional[int] = Field(None, ge=0,
                                  description="Upper bound for a single backoff delay (ms); defaults to 100")
    base_ms: Optional[int] = Field(None, ge=0,
                                   description="Lower bound for a single backoff delay (ms); defaults to 2")
    retry_delay_ms: int = Field(1000, ge=0,
                                description="Seed delay fed into the first decorrelated jitter step (ms)")
    max_retries: int = Field(3, ge=0,
                             description="Reconnection attempts allowed over the governor lifetime")

    debug: bool = Field(False, description="Emit human-readable progress lines through the package logger")

    model_config = SettingsConfigDict(
        env_prefix="SERVERLESS_PG_",
        case_sensitive=False,
        env_nested_delimiter="__",
        frozen=True,
        extra="ignore",
    )

    @field_validator("cap_ms", "base_ms", mode="before")
    @classmethod
    def _ignore_non_integer_bounds(cls, value):
        # Non-integral bounds fall back to the controller defaults; 50.0 counts as 50
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, bool) or not isinstance(value, (int, str, type(None))):
            return None
        return value

    @classmethod
    def from_options(cls, **options: Any) -> "GovernorSettings":
        """
        Build settings from a flat option mapping.

        Accepts both the snake_case field names and their camelCase spellings
        (maxConnections, retryDelayMs, ...). Keys naming a DatabaseSettings field (host, user,
        database, ...) may be given at the top level and are moved under
        ``database``.

        Raises:
            ConfigurationError: If an option is unknown or has an invalid value
        """
        governor_fields = set(cls.model_fields)
        database_fields = set(DatabaseSettings.model_fields)

        data: Dict[str, Any] = {}
        database: Dict[str, Any] = {}
        nested = options.pop("database", None)
        if isinstance(nested, DatabaseSettings):
            database.update(nested.model_dump(exclude_unset=True))
        elif isinstance(nested, dict):
            database.update(nested)
        elif nested is not None:
            # A bare string is the database name, as in node-postgres configs
            database["database"] = nested

        for key, value in options.items():
            name = _CAMEL_CASE_OPTIONS.get(key, key)
            if name == "connect_timeout_ms":
                database["connect_timeout"] = value / 1000
            elif name in governor_fields:
                data[name] = value
            elif name in database_fields:
                database[name] = value
            else:
                raise ConfigurationError(f"Unknown configuration option: {key}")

        try:
            return cls(database=DatabaseSettings(**database), **data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid governor configuration: {e}") from e

    @classmethod
    def from_yaml(cls, yaml_file: Union[str, Path]) -> "GovernorSettings":
        """Load settings from YAML file"""
        import yaml
        with open(yaml_file, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls.from_options(**data)

    def to_yaml(self) -> str:
        """Serialize settings to YAML, omitting the password"""
        redacted = self.model_copy(
            update={"database": self.database.model_copy(update={"password": None})}
        )
        return to_yaml_str(redacted)


def load_settings(config_path: Optional[str] = None) -> GovernorSettings:
    """
    Load settings from file and/or environment variables.

    - If config_path is provided and exists, loads settings from the YAML file
    - Otherwise, creates a new settings instance with values from environment
      variables and defaults

    Args:
        config_path: Path to YAML configuration file.

    Returns:
        GovernorSettings object with loaded configuration

    Raises:
        ConfigurationError: If the loaded values fail validation
    """
    if config_path and os.path.exists(config_path):
        return GovernorSettings.from_yaml(config_path)
    try:
        return GovernorSettings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid governor configuration: {e}") from e
