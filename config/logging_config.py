"""
Logging for the Markform engine.

Engine modules only ever call ``get_logger(__name__)``; loggers live under
the ``markform`` namespace and carry no handlers until the embedding
application opts in:

    from config.logging_config import setup_logger
    setup_logger(log_file="logs/markform.log")   # console + rotating file

or, from environment-driven settings:

    configure_logging(MarkformSettings())
"""
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from .constants import (
    LOG_LEVEL, LOG_FORMAT, LOG_NAMESPACE,
    LOG_MAX_SIZE_MB, LOG_BACKUP_COUNT
)

# Library default: records go nowhere unless a handler is configured
logging.getLogger(LOG_NAMESPACE).addHandler(logging.NullHandler())


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Logger for an engine module, without configuring any output.

    Args:
        name: Module name; names outside the namespace are nested under it
    """
    if not name or name == LOG_NAMESPACE:
        return logging.getLogger(LOG_NAMESPACE)
    if not name.startswith(f"{LOG_NAMESPACE}."):
        name = f"{LOG_NAMESPACE}.{name}"
    return logging.getLogger(name)


def setup_logger(
    level: str = LOG_LEVEL,
    log_file: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Attach handlers to the ``markform`` logger.

    Calling it again replaces the handlers it added before, so the
    configuration can be changed at runtime.

    Args:
        level: Level name for the namespace logger
        log_file: Rotating log file (DEBUG and up); no file when omitted
        console: Also log INFO and up to stderr

    Returns:
        The configured namespace logger
    """
    logger = logging.getLogger(LOG_NAMESPACE)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in [h for h in logger.handlers if getattr(h, "_markform_handler", False)]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    if console:
        stream = logging.StreamHandler()
        stream.setLevel(logging.INFO)
        stream.setFormatter(formatter)
        _attach(logger, stream)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        _attach(logger, file_handler)

    return logger


def configure_logging(settings) -> logging.Logger:
    """Apply ``log_level`` / ``log_file`` / ``log_console`` from MarkformSettings."""
    return setup_logger(
        level=settings.log_level,
        log_file=settings.log_file,
        console=settings.log_console,
    )


def _attach(logger: logging.Logger, handler: logging.Handler):
    handler._markform_handler = True
    logger.addHandler(handler)
