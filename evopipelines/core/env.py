"""
Environment configuration.

Values are read from the process environment after loading a ``.env`` file
from the working directory, if present.
"""

import os
import logging
from typing import Optional

from dotenv import load_dotenv

from .exceptions import MissingEnvironmentError

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

OPENAI_ENDPOINT = "OPENAI_ENDPOINT"
OPENAI_API_KEY = "OPENAI_API_KEY"
OPENAI_MODEL = "OPENAI_MODEL"
OLLAMA_ENDPOINT = "OLLAMA_ENDPOINT"
OLLAMA_MODEL = "OLLAMA_MODEL"
OLLAMA_API_KEY = "OLLAMA_API_KEY"
BATCH_TMP_DIR = "BATCH_TMP_DIR"

_MISSING = object()


def get_env(key: str, default=_MISSING) -> Optional[str]:
    """
    Read an environment variable.

    Args:
        key: Variable name
        default: Value returned when the variable is unset; pass None to make it optional

    Returns:
        The variable's value, or ``default``

    Raises:
        MissingEnvironmentError: If the variable is unset and no default was given
    """
    value = os.getenv(key)
    if value is not None:
        return value
    if default is _MISSING:
        raise MissingEnvironmentError(key)
    return default


def set_env(key: str, value: str) -> None:
    """Set an environment variable for the current process."""
    os.environ[key] = value
    logger.debug(f"Set environment variable {key}")
