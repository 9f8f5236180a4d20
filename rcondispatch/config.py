"""Configuration management for the RCON dispatch application.

This module provides utilities for loading and validating configuration
from environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from rcondispatch.dispatch import DispatcherConfig, EnqueueOptions
from rcondispatch.rconclient.connection import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

_DEFAULT_DATABASE_PATH = "./rcondispatch_sqlite.db"


def configure_logging(app_config: AppConfig) -> None:
    """Configure logging based on the application configuration.

    :param app_config: The application configuration instance
    """
    if not app_config.logging_level:
        logging.basicConfig(level=logging.INFO, force=True)
        return

    numeric_level = getattr(logging, app_config.logging_level.upper(), None)
    if not isinstance(numeric_level, int):
        LOGGER.warning("Invalid log level: %s, using INFO", app_config.logging_level)
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level, force=True)


@dataclass
class AppConfig:
    """Holds application configuration loaded from environment variables."""

    database_path: str
    logging_level: str | None
    root_path: str

    connect_timeout: int
    command_timeout: int | None
    default_delay_ms: int
    queue_idle_eviction: int | None

    shutdown_grace_period: int | None
    shutdown_await_period: int | None

    def __post_init__(self) -> None:
        """Initialize derived configuration attributes."""
        self.dispatcher_config = DispatcherConfig(
            connect_timeout=self.connect_timeout,
            command_timeout=self.command_timeout,
            default_delay_ms=self.default_delay_ms,
            idle_eviction_seconds=self.queue_idle_eviction,
            grace_period=self.shutdown_grace_period,
            await_shutdown_period=self.shutdown_await_period,
        )


def get_env_str(
    var_name: str,
    default: str | None,
    value_checker: Callable[[str], bool] | None = None,
) -> str:
    """Get an environment variable as a string with optional constraints.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value
    :raises ValueError: If the value does not meet the constraints
    """
    value = os.getenv(var_name, default)
    if value is None:
        msg = f"Environment variable {var_name} is required"
        raise ValueError(msg)

    if value_checker and not value_checker(value):
        msg = f"Environment variable {var_name} has invalid value: {value}"
        raise ValueError(msg)

    return value


def get_env_optional_int(
    var_name: str,
    default: int | None,
    value_checker: Callable[[int], bool] | None = None,
) -> int | None:
    """Get an environment variable as an integer with optional constraints.

    To indicate None, set the environment variable to an empty string.
    To indicate the default, leave the environment variable unset.
    To indicate an integer value, set the environment variable to that integer.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value as an integer
    :raises ValueError: If the value does not meet the constraints or is not an integer
    """
    value_str = os.getenv(var_name)
    if value_str is None:
        return default

    if value_str == "":
        return None

    if not value_str.isnumeric():
        msg = f"Environment variable {var_name} must be an integer, got: {value_str}"
        raise ValueError(msg)

    value = int(value_str)

    if value_checker and not value_checker(value):
        msg = f"Environment variable {var_name} has invalid value: {value}"
        raise ValueError(msg)

    return value


def get_env_int(
    var_name: str,
    default: int,
    value_checker: Callable[[int], bool] | None = None,
) -> int:
    """Get an environment variable as an integer with optional constraints.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value as an integer
    :raises ValueError: If the value does not meet the constraints or is not an integer
    """
    value_str = os.getenv(var_name)
    if value_str is None or value_str == "":
        return default

    if not value_str.isnumeric():
        msg = f"Environment variable {var_name} must be an integer, got: {value_str}"
        raise ValueError(msg)

    value = int(value_str)

    if value_checker and not value_checker(value):
        msg = f"Environment variable {var_name} has invalid value: {value}"
        raise ValueError(msg)

    return value


def load_config_from_env(env_file: str | Path | None) -> AppConfig:
    """Load application configuration from environment variables.

    :param env_file: Optional .env file loaded before reading the environment
    :return: An AppConfig instance populated with environment variable values
    """
    if env_file:
        load_dotenv(dotenv_path=env_file)

    return AppConfig(
        database_path=get_env_str("DATABASE_PATH", _DEFAULT_DATABASE_PATH),
        logging_level=get_env_str("LOGGING_LEVEL", "INFO"),
        root_path=get_env_str("ROOT_PATH", ""),
        connect_timeout=get_env_int(
            "RCON_CONNECT_TIMEOUT",
            DEFAULT_CONNECT_TIMEOUT,
            lambda timeout: timeout > 0,
        ),
        command_timeout=get_env_optional_int(
            "RCON_COMMAND_TIMEOUT",
            DEFAULT_COMMAND_TIMEOUT,  # empty string disables the timeout
            lambda timeout: timeout > 0,
        ),
        default_delay_ms=get_env_int(
            "DEFAULT_COMMAND_DELAY_MS",
            EnqueueOptions.DEFAULT_DELAY_MS,
        ),
        queue_idle_eviction=get_env_optional_int(
            "QUEUE_IDLE_EVICTION",
            None,  # if not set, drained queues are kept
            lambda seconds: seconds > 0,
        ),
        shutdown_grace_period=get_env_optional_int(
            "SHUTDOWN_GRACE_PERIOD",
            DispatcherConfig.DISABLE,
            DispatcherConfig.valid_shutdown_phase_timeout,
        ),
        shutdown_await_period=get_env_optional_int(
            "SHUTDOWN_AWAIT_PERIOD",
            DispatcherConfig.NO_TIMEOUT,
            DispatcherConfig.valid_shutdown_phase_timeout,
        ),
    )
