# src/terminal_fleet/logging_setup.py
import logging
import sys
from pathlib import Path

RUN_LOGGER_NAME = "terminal_fleet"


def setup_logging(config, debug: bool = False) -> logging.Logger:
    """
    Configures the run logger based on the settings object and returns it.

    The returned logger is passed to every component for the duration of the
    run; call close_logging() when the run ends. The log file is opened in
    append mode and is never rotated or truncated.
    """
    log_settings = config.logging
    level = "DEBUG" if debug else log_settings.level.upper()

    logger = logging.getLogger(RUN_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Clear handlers left by a previous run in the same process
    if logger.hasHandlers():
        close_logging(logger)

    formatter = logging.Formatter(log_settings.format, datefmt=log_settings.date_format)

    # 1. Console Handler
    if log_settings.console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # 2. File Handler (append-only)
    if log_settings.log_file:
        log_file_path = Path(log_settings.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging configured.")
    return logger


def close_logging(logger: logging.Logger):
    """Flush, close and detach every handler of the run logger."""
    for handler in list(logger.handlers):
        try:
            handler.flush()
            handler.close()
        finally:
            logger.removeHandler(handler)
