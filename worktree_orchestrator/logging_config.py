"""Logging configuration for worktree-orchestrator"""
import logging
import sys
from pathlib import Path
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log levels in terminal output."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        """Format log record with colors if in a terminal."""
        if sys.stderr.isatty():
            levelname = record.levelname
            if levelname in self.COLORS:
                record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        return super().format(record)


def default_log_file() -> Path:
    """Location of the debug log file."""
    return Path.home() / '.worktree-orchestrator' / 'worktree-orchestrator.log'


def setup_logging(verbose: bool = False, debug: bool = False, log_file: Optional[Path] = None) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, show INFO level messages
        debug: If True, show DEBUG level messages and also write them to a log file
        log_file: Override the debug log file location
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if debug or log_file is not None:
        log_path = log_file or default_log_file()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode='w')  # Overwrite each run
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)
        if log_file is not None:
            root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    if debug:
        formatter = ColoredFormatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = ColoredFormatter(
            fmt='[%(name)s] %(message)s'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the specified module.

    Args:
        name: Name of the module (typically __name__)

    Returns:
        Logger instance
    """
    # Strip the package prefix for cleaner log names
    if name.startswith('worktree_orchestrator.'):
        name = name.replace('worktree_orchestrator.', '')
    if name.startswith('services.'):
        name = name.replace('services.', '')

    return logging.getLogger(name)
