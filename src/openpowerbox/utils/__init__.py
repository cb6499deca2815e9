"""
Utils Package

Logging setup and configuration file handling.
"""

from .logger import setup_logger
from .config import AppConfig, ConfigError, load_config, save_config

__all__ = [
    'setup_logger',
    'AppConfig',
    'ConfigError',
    'load_config',
    'save_config',
]
