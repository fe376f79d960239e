"""Log utilities."""

import logging
import os

from rich.logging import RichHandler

LOG_LEVEL_ENV_VAR = "USAGE_GATE_LOG_LEVEL"


def get_logger(name: str) -> logging.Logger:
    """Retrieve logger with the provided name.

    The level defaults to DEBUG and can be lowered for noisy deployments
    through the USAGE_GATE_LOG_LEVEL environment variable.
    """
    logger = logging.getLogger(name)
    level = os.environ.get(LOG_LEVEL_ENV_VAR, "DEBUG").upper()
    logger.setLevel(logging.getLevelNamesMapping().get(level, logging.DEBUG))
    logger.handlers = [RichHandler()]
    logger.propagate = False
    return logger
