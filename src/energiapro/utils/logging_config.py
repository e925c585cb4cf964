"""Shared logging configuration with colored output for the CLI."""
from __future__ import annotations
import logging
import os
import sys
from typing import Optional, TextIO, Union


def _supports_ansi(stream: TextIO) -> bool:
    """Detect if ``stream`` supports ANSI escape codes.

    NO_COLOR (https://no-color.org/) wins over FORCE_COLOR; otherwise colors
    are used only when the stream is a TTY.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False
    if sys.platform == "win32":
        return bool(
            os.environ.get("WT_SESSION")  # Windows Terminal
            or os.environ.get("ANSICON")
            or os.environ.get("ConEmuANSI") == "ON"
            or "TERM" in os.environ  # Git Bash, Cygwin
        )
    return True


class LogColors:
    """ANSI color codes used by ``ColoredFormatter``."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    # Log level colors
    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta
    # Component colors
    MODULE = '\033[94m'     # Blue


LEVEL_COLORS = {
    'DEBUG': LogColors.DEBUG,
    'INFO': LogColors.INFO,
    'WARNING': LogColors.WARNING,
    'ERROR': LogColors.ERROR,
    'CRITICAL': LogColors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Format records as ``[LEVEL] logger - message``, colored when enabled."""

    def __init__(self, use_color: bool = True) -> None:
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            message = f"{message}\n{record.exc_text}"

        if not self.use_color:
            return f"[{record.levelname}] {record.name} - {message}"

        level_color = LEVEL_COLORS.get(record.levelname, LogColors.RESET)
        colored_levelname = f"{level_color}{LogColors.BOLD}[{record.levelname}]{LogColors.RESET}"
        colored_module = f"{LogColors.MODULE}{record.name}{LogColors.RESET}"
        return f"{colored_levelname} {colored_module} - {message}"


def resolve_level(level: Union[int, str]) -> int:
    """Accept a logging level as int or name (``"debug"``, ``"INFO"``...)."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {level}")
    return resolved


def configure_logging(
    level: Union[int, str] = logging.INFO, stream: Optional[TextIO] = None
) -> None:
    """Configure root logging for the CLI.

    Logs go to stderr so stdout stays reserved for exported data. Noisy
    HTTP library loggers are limited to WARNING and above.

    Args:
        level: Logging level (default: logging.INFO).
        stream: Output stream (default: sys.stderr).

    Example:
        >>> from energiapro.utils.logging_config import configure_logging
        >>> configure_logging("debug")
    """
    level = resolve_level(level)
    stream = stream or sys.stderr

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_color=_supports_ansi(stream)))
    root_logger.addHandler(console_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


__all__ = ["LogColors", "ColoredFormatter", "configure_logging", "resolve_level"]
