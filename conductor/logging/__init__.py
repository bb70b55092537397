"""Logging setup on top of loguru."""

import sys

from loguru import logger

from conductor.logging.error_store import clear_errors, get_errors, init_error_store

_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | <cyan>{name}</cyan> - {message}"

# loguru installs its default stderr handler with id 0
_stderr_sink: int | None = 0


def configure_logging(level: str = "INFO") -> None:
    """Swap the stderr sink for one at ``level``. Other sinks are left alone."""
    global _stderr_sink
    if _stderr_sink is not None:
        try:
            logger.remove(_stderr_sink)
        except ValueError:
            logger.debug("stderr sink was already removed")
    _stderr_sink = logger.add(sys.stderr, level=level.upper(), format=_FORMAT)


__all__ = ["clear_errors", "configure_logging", "get_errors", "init_error_store"]
