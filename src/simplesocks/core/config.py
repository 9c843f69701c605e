"""
simplesocks configuration using Pydantic Settings.

Environment variables use the SIMPLESOCKS_ prefix:
- SIMPLESOCKS_HOST, SIMPLESOCKS_PORT, SIMPLESOCKS_RELAY (server settings)
- SIMPLESOCKS_LOG_LEVEL, SIMPLESOCKS_LOG_FORMAT (log settings)
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_project_root() -> Path:
    """Get the project root directory."""
    if env_home := os.getenv("SIMPLESOCKS_HOME"):
        return Path(env_home)

    return Path.cwd()


def resolve_path(relative_path: str) -> Path:
    """Resolve a relative path against the project root."""
    path = Path(relative_path)
    if path.is_absolute():
        return path
    return get_project_root() / path


class ServerSettings(BaseSettings):
    """Server configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="SIMPLESOCKS_",
        extra="ignore",
    )

    host: str = Field(
        default="127.0.0.1",
        description="Server bind address"
    )
    port: int = Field(
        default=1080,
        ge=1,
        le=65535,
        description="Server bind port"
    )
    max_connections: int = Field(
        default=100,
        ge=1,
        description="Maximum concurrent connections"
    )
    handshake_timeout: float = Field(
        default=30,
        gt=0,
        description="Seconds a client gets to complete the handshake"
    )
    connect_timeout: float = Field(
        default=30,
        gt=0,
        description="Seconds allowed for the outbound connection"
    )
    allow_bind: bool = Field(
        default=False,
        description="Accept BIND requests in addition to CONNECT"
    )
    relay: Optional[str] = Field(
        default=None,
        description="Relay called after SUCCESS, as 'module:function'"
    )

    @field_validator('relay')
    @classmethod
    def validate_relay(cls, v: Optional[str]) -> Optional[str]:
        """Validate the relay import path."""
        if v is None:
            return v
        module, sep, attr = v.partition(":")
        if not sep or not module or not attr:
            raise ValueError(f"Invalid relay: {v}. Expected 'module:function'")
        return v


class LogSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="SIMPLESOCKS_LOG_",
        extra="ignore",
    )

    level: str = Field(
        default="INFO",
        description="Log level"
    )
    format: str = Field(
        default="console",
        description="Log format (json, console)"
    )
    file: Optional[str] = Field(
        default=None,
        description="Log file path"
    )
    max_size_mb: int = Field(
        default=10,
        ge=1,
        description="Rotate the log file at this size"
    )
    backup_count: int = Field(
        default=3,
        ge=0,
        description="Rotated log files to keep"
    )

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator('format')
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ("json", "console"):
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v

    @property
    def file_path(self) -> Optional[Path]:
        """Log file resolved against the project root, if one is set."""
        if not self.file:
            return None
        return resolve_path(self.file)


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from:
    1. Environment variables (SIMPLESOCKS_* prefix)
    2. YAML config file (config/config.yaml)
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="SIMPLESOCKS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @classmethod
    def load_from_yaml(cls, config_file: Path) -> "Settings":
        """Load settings from YAML file with environment overrides."""
        data = {}

        if config_file.exists():
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}

        settings_dict = {}

        if 'server' in data:
            settings_dict['server'] = ServerSettings(**data['server'])
        if 'log' in data:
            settings_dict['log'] = LogSettings(**data['log'])

        return cls(**settings_dict)

    def save_to_yaml(self, config_file: Path) -> None:
        """Save settings to YAML file."""
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'server': self.server.model_dump(),
            'log': self.log.model_dump(),
        }

        with open(config_file, 'w') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def validate_all(self) -> list[str]:
        """
        Check settings that field validation cannot.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.server.relay:
            errors.append("server.relay is not set; a relay is required to serve clients")

        if not 1 <= self.server.port <= 65535:
            errors.append(f"Invalid server port: {self.server.port}")

        if self.log.file_path:
            log_dir = self.log.file_path.parent
            if not log_dir.is_dir():
                errors.append(f"Log directory does not exist: {log_dir}")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached singleton).

    Loads config/config.yaml under the project root when it exists, then
    applies environment variable overrides.
    """
    config_file = get_project_root() / "config" / "config.yaml"

    if config_file.exists():
        return Settings.load_from_yaml(config_file)

    return Settings()
