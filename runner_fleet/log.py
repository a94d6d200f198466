"""
Logging Module

Console and file logging setup shared by every entry point.
"""

import logging

LOGGER_NAME = 'runner_fleet'


def setup_logger(config) -> logging.Logger:
    """
    Setup logging configuration

    Calling this more than once reconfigures the level but does not add
    duplicate handlers.

    Args:
        config: FleetConfig instance

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    level = getattr(logging, config.log_level, logging.INFO)
    logger.setLevel(level)
    logger.propagate = False

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    # Console handler (stderr)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s')
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler
    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s - %(message)s')
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger
