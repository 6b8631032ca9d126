#!/usr/bin/env python3
"""
DeepBot client logging configuration

Centralized logging setup so the session, dispatcher, router and mock server
all print frames and lifecycle events in the same shape.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting...")
    logger.debug("SEND: %s", frame, extra={"command": "get_user"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        # Protocol context passed through `extra`
        context = []

        if hasattr(record, 'function'):
            context.append(f"fn={record.function}")
        if hasattr(record, 'command'):
            context.append(f"cmd={record.command}")
        if hasattr(record, 'state'):
            context.append(f"state={record.state}")
        if hasattr(record, 'uri'):
            context.append(f"uri={record.uri}")

        # Add context to message if present; the record is shared between handlers
        if not context:
            return super().format(record)
        msg = record.msg
        prefix = f"[{' '.join(context)}] "
        if record.args:
            prefix = prefix.replace('%', '%%')
        record.msg = f"{prefix}{msg}"
        try:
            return super().format(record)
        finally:
            record.msg = msg


class ColoredFormatter(GenericFormatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance

    Examples:
        logger = get_logger(__name__)
        logger.info("Session authenticated")

        # With context
        logger.warning("No reply", extra={"command": "get_user"})
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    logger.setLevel(_get_log_level(level))

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    _add_console_handler(logger, colored=_is_development())
    if os.getenv('DEEPBOT_LOG_DIR'):
        _add_file_handler(logger, Path(os.environ['DEEPBOT_LOG_DIR']))

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    level = level or os.getenv('DEEPBOT_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    # Default based on environment
    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter: logging.Formatter = ColoredFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = GenericFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_dir: Path) -> None:
    """Add file handler writing to <log_dir>/deepbot.log"""

    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / "deepbot.log", encoding="utf-8")

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    # stderr must be a terminal
    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode"

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    # Re-level the loggers handed out before the application picked a level
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(_get_log_level(level))


def log_frame(logger: logging.Logger, direction: str, frame: str,
              **context: Any) -> None:
    """
    Log one wire frame at debug level.

    Args:
        logger: Logger instance
        direction: "SEND" or "RECV"
        frame: Raw frame text
        **context: Additional context fields (function, command, ...)

    Example:
        log_frame(logger, "SEND", "api|get_user|alice", command="get_user")
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return
    extra: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
    logger.debug("%s: %s", direction, frame, extra=extra)
