"""Environment variable utilities for chflow.

This module loads environment variables from a .env file found in the working
directory or one of its parents, following the standard .env conventions.
"""

import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

from chflow.logging import get_logger

logger = get_logger(__name__)

ENV_FILE_NAME = ".env"


def find_env_file(start_path: Optional[str] = None) -> Optional[Path]:
    """Find the nearest .env file walking up from ``start_path``.

    Args:
    ----
        start_path: Path to start searching from (defaults to current directory)

    Returns:
    -------
        Path to the .env file, or None if not found
    """
    if start_path is None:
        start_path = os.getcwd()

    current = Path(start_path).resolve()

    for parent in [current, *current.parents]:
        candidate = parent / ENV_FILE_NAME
        if candidate.is_file():
            logger.debug(f"Found .env file at: {candidate}")
            return candidate

    logger.debug("No .env file found")
    return None


def setup_environment(start_path: Optional[str] = None, override: bool = False) -> bool:
    """Load the nearest .env file into the process environment.

    Args:
    ----
        start_path: Path to start searching from (defaults to current directory)
        override: Whether values from the file replace variables already set

    Returns:
    -------
        True if a .env file was found and loaded, False otherwise
    """
    env_file = find_env_file(start_path)
    if env_file is None:
        return False

    loaded = load_dotenv(env_file, override=override)
    if loaded:
        logger.debug(f"Loaded environment variables from: {env_file}")
    return bool(loaded)


def get_env_var(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get an environment variable with optional default."""
    return os.environ.get(name, default)


def get_env_int(name: str, default: int) -> int:
    """Get an integer environment variable, falling back on bad values."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}: {raw!r}")
        return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get a boolean environment variable ("true", "1", "yes" are true)."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes", "on")


def list_env_vars(prefix: Optional[str] = None) -> Dict[str, str]:
    """List environment variables, optionally filtered by prefix.

    Values of variables whose names look like secrets are masked.
    """
    result = {}
    for key, value in os.environ.items():
        if prefix and not key.startswith(prefix):
            continue
        if any(marker in key.upper() for marker in ("PASSWORD", "TOKEN", "SECRET")):
            value = "***"
        result[key] = value
    return result
