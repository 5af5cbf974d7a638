"""Environment helpers."""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class MissingConfigurationError(RuntimeError):
    pass


def require_env(name: str) -> str:
    """Return a mandatory environment variable or raise before any work starts."""
    value = os.environ.get(name)
    if not value:
        raise MissingConfigurationError(f"Missing required environment variable: {name}")
    return value


def load_env_file() -> None:
    # Existing variables win over the file.
    if load_dotenv(override=False):
        logger.info("Loaded local .env file")
