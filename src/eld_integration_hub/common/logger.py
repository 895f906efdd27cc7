# eld_integration_hub/common/logger.py
"""
Logging configuration for the eld_integration_hub package.

Configures the package-level logger once so every module logger created with
logging.getLogger(__name__) inherits the same handlers and format.
"""

import logging
import sys
from pathlib import Path

from eld_integration_hub.config import LoggingConfig

__all__: list[str] = ['PACKAGE_LOGGER_NAME', 'setup_logger']

PACKAGE_LOGGER_NAME: str = 'eld_integration_hub'


def setup_logger(
    logging_level: int | None = None,
    config: LoggingConfig | None = None,
) -> logging.Logger:
    """
    Set up logging for the eld_integration_hub package.

    Calling it again replaces the existing handlers, so it is safe to call
    from both an application entry point and a test fixture.

    Args:
        logging_level: Console level used when no config is given
            (defaults to INFO).
        config: Validated LoggingConfig. When given, its console level wins
            over logging_level and a file handler is added if file_path is set.

    Returns:
        The package-level logger.

    Example:
        >>> setup_logger(logging_level=logging.DEBUG)
        >>> setup_logger(config=load_config('eld_hub.yaml').logging)
    """
    package_logger: logging.Logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    package_logger.handlers.clear()

    log_format: logging.Formatter = logging.Formatter(
        fmt='%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    if logging_level is None:
        logging_level = logging.INFO
    console_level: int = config.get_console_level_int() if config else logging_level

    console_handler: logging.Handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_format)
    console_handler.setLevel(console_level)
    package_logger.addHandler(console_handler)

    file_level: int | None = config.get_file_level_int() if config else None

    if config is not None and config.file_path is not None and file_level is not None:
        log_file_path: Path = config.file_path
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler: logging.FileHandler = logging.FileHandler(
            filename=str(log_file_path),
            mode='a',
            encoding='utf-8',
        )
        file_handler.setFormatter(log_format)
        file_handler.setLevel(file_level)
        package_logger.addHandler(file_handler)
    else:
        file_level = None

    # The logger itself must pass the most verbose handler's records through.
    effective_level: int = console_level
    if file_level is not None:
        effective_level = min(console_level, file_level)

    package_logger.setLevel(effective_level)
    return package_logger
