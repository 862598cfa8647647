"""Runtime settings for chflow.

Settings come from environment variables (optionally loaded from a .env file
by :func:`chflow.utils.env.setup_environment`). They are read once and cached;
tests call :func:`reset_settings` after changing the environment.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Optional

from chflow.utils.env import get_env_bool, get_env_int, get_env_var

DEFAULT_BATCH_SIZE = 1000
DEFAULT_PREVIEW_LIMIT = 100
DEFAULT_CONNECT_TIMEOUT = 30
DEFAULT_DATA_DIR = "uploads"
DEFAULT_CLICKHOUSE_PORT = 8123


@dataclass(frozen=True)
class Settings:
    """Process-wide settings consumed by the transfer engine and the CLI."""

    batch_size: int = DEFAULT_BATCH_SIZE
    preview_limit: int = DEFAULT_PREVIEW_LIMIT
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    data_dir: str = DEFAULT_DATA_DIR
    environment: str = "development"
    log_level: str = "info"
    # Connection defaults used by the CLI when an option is omitted
    connection_defaults: Dict[str, Any] = field(default_factory=dict)

    @property
    def production(self) -> bool:
        """Whether diagnostic detail should be withheld from results."""
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        return cls(
            batch_size=get_env_int("CHFLOW_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            preview_limit=get_env_int("CHFLOW_PREVIEW_LIMIT", DEFAULT_PREVIEW_LIMIT),
            connect_timeout=get_env_int(
                "CHFLOW_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT
            ),
            data_dir=get_env_var("CHFLOW_DATA_DIR", DEFAULT_DATA_DIR),
            environment=get_env_var("CHFLOW_ENV", "development"),
            log_level=get_env_var("CHFLOW_LOG_LEVEL", "info"),
            connection_defaults={
                "host": get_env_var("CLICKHOUSE_HOST", "localhost"),
                "port": get_env_int("CLICKHOUSE_PORT", DEFAULT_CLICKHOUSE_PORT),
                "database": get_env_var("CLICKHOUSE_DB", "default"),
                "username": get_env_var("CLICKHOUSE_USER", "default"),
                "password": get_env_var("CLICKHOUSE_PASSWORD", ""),
                "secure": get_env_bool("CLICKHOUSE_SECURE", False),
                "auth_token": get_env_var("CLICKHOUSE_TOKEN"),
            },
        )

    def resolve_data_path(self, file_name: str) -> str:
        """Resolve a file name against the data directory.

        Absolute paths are returned unchanged. Relative names must stay inside
        the data directory.

        Raises:
            ValueError: If a relative name escapes the data directory
        """
        if os.path.isabs(file_name):
            return file_name

        base = os.path.abspath(self.data_dir)
        resolved = os.path.abspath(os.path.join(base, file_name))
        if os.path.commonpath([base, resolved]) != base:
            raise ValueError(f"File name escapes the data directory: {file_name}")
        return resolved


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached process settings."""
    return Settings.from_env()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()


def resolve_settings(settings: Optional[Settings] = None) -> Settings:
    """Return ``settings`` or the cached process settings."""
    return settings if settings is not None else get_settings()
