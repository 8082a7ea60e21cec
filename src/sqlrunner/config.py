"""Configuration management for the query runner."""

import os
import logging
from dataclasses import dataclass
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"
DEFAULT_QUERY_TIMEOUT = 600
DEFAULT_CONNECT_TIMEOUT = 15


@dataclass
class Config:
    """Runner defaults with validation."""
    odbc_driver: str = DEFAULT_ODBC_DRIVER
    query_timeout: int = DEFAULT_QUERY_TIMEOUT
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT

    def __post_init__(self):
        """Validate configuration after initialization."""
        errors = []

        if not self.odbc_driver or not self.odbc_driver.strip():
            errors.append("SQLRUNNER_ODBC_DRIVER cannot be empty")

        if self.query_timeout < 0:
            errors.append("SQLRUNNER_QUERY_TIMEOUT must be zero or positive")

        if self.connect_timeout < 0:
            errors.append("SQLRUNNER_CONNECT_TIMEOUT must be zero or positive")

        if errors:
            error_message = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_message)


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name, "")
    if not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Loads from .env file if present, then from environment variables.
    Logging is left to the host application.

    Returns:
        Config object with validated settings
    """
    load_dotenv()

    try:
        config = Config(
            odbc_driver=os.getenv("SQLRUNNER_ODBC_DRIVER", DEFAULT_ODBC_DRIVER),
            query_timeout=_int_from_env("SQLRUNNER_QUERY_TIMEOUT", DEFAULT_QUERY_TIMEOUT),
            connect_timeout=_int_from_env("SQLRUNNER_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
        )
        logger.debug("Configuration loaded successfully")
        return config
    except ValueError as error:
        logger.error(f"Failed to load configuration: {error}")
        raise
