"""
WatchX Configuration Module.

Runtime tuning via Pydantic Settings and the YAML watch configuration.
Requires Python 3.11+.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file into os.environ at module import time
# This ensures nested BaseSettings classes can read the values
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    # Try current working directory
    load_dotenv()


DEFAULT_PORT = 8080
DEFAULT_CONFIG_PATH = "watchx.yaml"


class ResetPolicy(str, Enum):
    """How the debounce gate returns to idle after a trigger."""

    FIXED = "fixed"
    COMPLETION = "completion"


class ReclaimPolicy(str, Enum):
    """How owners of a bound port are stopped."""

    GRACEFUL = "graceful"
    FORCE = "force"


class ConfigError(Exception):
    """Raised when the watch configuration cannot be read or validated."""


class WatcherSettings(BaseSettings):
    """File watcher and debounce settings."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_")

    debounce_ms: int = Field(default=1000, ge=50, le=60000)
    reset_policy: ResetPolicy = Field(default=ResetPolicy.COMPLETION)
    poll_timeout_ms: int = Field(default=100, ge=10, le=5000)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def poll_timeout_seconds(self) -> float:
        return self.poll_timeout_ms / 1000.0


class SupervisorSettings(BaseSettings):
    """Process supervision and port reclaim settings."""

    model_config = SettingsConfigDict(env_prefix="SUPERVISOR_")

    kill_timeout_seconds: float = Field(default=5.0, ge=0.1)
    poll_interval_seconds: float = Field(default=0.1, ge=0.01)
    port_retries: int = Field(default=3, ge=0, le=20)
    retry_delay_seconds: float = Field(default=1.0, ge=0.0)
    reclaim_policy: ReclaimPolicy = Field(default=ReclaimPolicy.GRACEFUL)
    reclaim_grace_ms: int = Field(default=500, ge=0, le=30000)
    lookup_timeout_seconds: float = Field(default=5.0, ge=0.5)
    kill_tree: bool = Field(default=True)

    @property
    def reclaim_grace_seconds(self) -> float:
        return self.reclaim_grace_ms / 1000.0


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="console")  # "json" or "console"


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="WatchX")
    app_version: str = Field(default="0.1.0")

    # Sub-settings
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    supervisor: SupervisorSettings = Field(default_factory=SupervisorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns singleton instance of Settings for performance.
    """
    return Settings()


class WatchConfig(BaseModel):
    """Watch session configuration, read from a YAML file."""

    watch_dir: Path
    commands: list[str] = Field(min_length=1)
    env: dict[str, str] = Field(default_factory=dict)
    ignore: list[str] = Field(default_factory=list)

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        """YAML turns `PORT: 3000` into an int; child environments need strings."""
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(key): "" if value is None else str(value) for key, value in v.items()}
        return v

    @field_validator("ignore", mode="before")
    @classmethod
    def default_ignore(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def port(self) -> int:
        """Port reclaimed before each restart, taken from the `PORT` entry."""
        return parse_port(self.env.get("PORT"))


def parse_port(value: str | None, default: int = DEFAULT_PORT) -> int:
    """Parse a port number, falling back to `default` when absent or out of range."""
    if value is None:
        return default
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return default
    port = int(value)
    if not 0 <= port <= 65535:
        return default
    return port


def load_watch_config(path: Path | str) -> WatchConfig:
    """
    Load and validate the watch configuration.

    Relative `watch_dir` values are resolved against the config file's directory.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Validated WatchConfig

    Raises:
        ConfigError: If the file is unreadable, malformed or invalid
    """
    config_path = Path(path)
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration {config_path} must be a mapping")

    try:
        config = WatchConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration {config_path}: {e}") from e

    if not config.watch_dir.is_absolute():
        config = config.model_copy(
            update={"watch_dir": (config_path.parent / config.watch_dir).resolve()}
        )
    return config
