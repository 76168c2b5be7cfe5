"""Logging configuration for SimplHost."""

import logging
import sys

ROOT_LOGGER = "simplhost"


def configure_logging(level: str = "INFO", debug: bool = False) -> logging.Logger:
    """Attach a single console handler to the ``simplhost`` logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    resolved = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(resolved)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(handler)

    # Prevent duplicate logs
    logger.propagate = False
    return logger
