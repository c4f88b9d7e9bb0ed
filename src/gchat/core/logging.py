# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Structured logging configuration for the gchat node.

Provides:
- JSON formatter for production and the debug log file
- Standard formatter for development (human-readable)
- An ``area`` tag on every record (BACKEND, TOR, NETWORK, CRYPTO, CLIENT)
- A broadcast handler that republishes records to UI subscribers
- A filter that silences expected disconnect noise during shutdown
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .events import Subscribers

AREA_BACKEND = "BACKEND"
AREA_TOR = "TOR"
AREA_NETWORK = "NETWORK"
AREA_CRYPTO = "CRYPTO"
AREA_CLIENT = "CLIENT"

CLIENT_LOGGER_NAME = "gchat.client"

# Longest prefix wins.
_AREA_PREFIXES: dict[str, str] = {
    "gchat.tor": AREA_TOR,
    "gchat.transport": AREA_NETWORK,
    "gchat.policy": AREA_NETWORK,
    "gchat.identity": AREA_CRYPTO,
    "gchat.migration": AREA_CRYPTO,
    CLIENT_LOGGER_NAME: AREA_CLIENT,
}


def area_for(logger_name: str) -> str:
    """Map a logger name to its log area."""
    best = ""
    area = AREA_BACKEND
    for prefix, candidate in _AREA_PREFIXES.items():
        if (logger_name == prefix or logger_name.startswith(prefix + ".")) and len(prefix) > len(best):
            best = prefix
            area = candidate
    return area


def record_area(record: logging.LogRecord) -> str:
    """Area of a record; an explicit ``extra={"area": ...}`` overrides the logger name."""
    explicit = getattr(record, "area", None)
    if isinstance(explicit, str) and explicit:
        return explicit
    return area_for(record.name)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments and the debug log file."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "area": record_area(record),
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add source location for errors
        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Standard log formatter for development.

    Human-readable format with colors for terminal output.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - [%(area)s] %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        # Make a copy to avoid mutating the original record
        record = logging.makeLogRecord(record.__dict__)
        record.area = record_area(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super().format(record)


class ShutdownNoiseFilter(logging.Filter):
    """Drop NETWORK warnings and errors once shutdown has begun.

    Peers disconnecting while the node goes down is expected, so those
    records are noise rather than signal.
    """

    def __init__(self, is_shutting_down: Callable[[], bool]):
        super().__init__()
        self._is_shutting_down = is_shutting_down

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno < logging.WARNING:
            return True
        if record_area(record) != AREA_NETWORK:
            return True
        return not self._is_shutting_down()


class LogBroadcastHandler(logging.Handler):
    """Republish log records as ``debug-log`` entries for UI clients.

    Entries have the shape ``{timestamp, level, area, message, details}``.
    Records coming from the client itself are not echoed back.
    """

    def __init__(self, level: int = logging.INFO):
        super().__init__(level)
        self.entries: Subscribers[dict[str, Any]] = Subscribers()

    def emit(self, record: logging.LogRecord) -> None:
        area = record_area(record)
        if area == AREA_CLIENT:
            return
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
                "level": record.levelname,
                "area": area,
                "message": record.getMessage(),
                "details": getattr(record, "extra_data", None),
            }
            self.entries.publish(entry)
        except Exception:
            self.handleError(record)


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Configure logging for the node.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (auto-detect if None)
        log_file: Optional file to write logs to

    Environment variables:
        GCHAT_LOG_LEVEL: Override log level
        GCHAT_LOG_FORMAT: Log format ("json" or "text", auto-detect if unset)
        GCHAT_LOG_FILE: Log file path
    """
    from .config import get_settings

    settings = get_settings()

    level = settings.log_level if level is None else level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        format_env = settings.log_format.lower()
        if format_env == "json":
            json_format = True
        elif format_env == "text":
            json_format = False
        else:
            # Auto-detect: use JSON if not in a terminal
            json_format = not sys.stderr.isatty()

    if log_file is None:
        log_file = settings.log_file or str(settings.debug_log_path)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        settings.data_root.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        # Always use JSON for file output
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Set levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def install_node_handlers(
    is_shutting_down: Callable[[], bool],
    broadcast: LogBroadcastHandler | None = None,
) -> LogBroadcastHandler:
    """Attach the shutdown filter and the broadcast handler to the root logger.

    The filter is attached to every root handler so suppressed records
    reach neither the console, the debug log nor UI clients.
    """
    root_logger = logging.getLogger()
    noise_filter = ShutdownNoiseFilter(is_shutting_down)
    broadcast = broadcast or LogBroadcastHandler()
    root_logger.addHandler(broadcast)
    for handler in root_logger.handlers:
        handler.addFilter(noise_filter)
    return broadcast


def log_client_entry(level: str, message: str, details: Any = None) -> None:
    """Re-log an entry forwarded by a UI client under the ``gchat.client`` logger."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    extra = {"extra_data": details} if details is not None else None
    logging.getLogger(CLIENT_LOGGER_NAME).log(numeric, message, extra=extra)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
