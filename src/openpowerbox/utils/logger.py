"""
Logging configuration for the Open Power Box tools
"""

import logging
import sys
import time
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

DEFAULT_LOG_DIR = Path.home() / ".openpowerbox" / "logs"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(
    log_level: Union[int, str] = logging.INFO,
    log_dir: Optional[Path] = None,
    max_size_mb: int = 10,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """
    Setup application logger with rotating file handlers.

    Args:
        log_level: Logging level, as a number or a name such as "DEBUG"
        log_dir: Directory for log files (default: ~/.openpowerbox/logs)
        max_size_mb: Maximum log file size in MB before rotation (default: 10)
        backup_count: Number of backup files to keep (default: 5)
        console: Also log to stdout

    Returns:
        Path of the main log file
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
        if not isinstance(log_level, int):
            raise ValueError(f"Unknown log level {log_level!r}")

    log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "openpowerbox.log"
    error_log_file = log_dir / "openpowerbox_errors.log"

    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers (in case of re-initialization)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    error_handler = RotatingFileHandler(
        error_log_file,
        maxBytes=5 * 1024 * 1024,  # 5 MB for errors
        backupCount=3,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    root_logger.addHandler(error_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Frame-level chatter from third-party packages
    logging.getLogger("PyQt6").setLevel(logging.WARNING)
    logging.getLogger("serial").setLevel(logging.WARNING)

    _cleanup_old_logs(log_dir, days=30)

    logger = logging.getLogger(__name__)
    logger.info(f"Logger initialized. Log file: {log_file}")
    return log_file


def _cleanup_old_logs(log_dir: Path, days: int = 30) -> None:
    """Remove log files older than specified days."""
    cutoff_time = time.time() - (days * 24 * 60 * 60)

    for log_file in log_dir.glob("*.log*"):
        try:
            if log_file.stat().st_mtime < cutoff_time:
                log_file.unlink()
        except OSError as e:
            logging.getLogger(__name__).debug(f"Could not remove old log {log_file}: {e}")
