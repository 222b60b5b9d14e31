"""
Configuration module for the Markform engine.
"""
from .constants import *
from .logging_config import setup_logger, get_logger, configure_logging
from .settings import MarkformSettings

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    'configure_logging',
    # Settings
    'MarkformSettings',
    # Constants (all exported via *)
]
