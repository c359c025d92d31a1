"""Logging setup for the sensor gateway.

Two renderings exist: one JSON object per line for service managers and
syslog, and a short human readable line for an operator at a terminal
(where console commands are typed). ``log_format = "auto"`` picks the text
form only when stderr is a TTY.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from .settings import RuntimeConfig

SYSLOG_SOCKET = Path("/dev/log")
SYSLOG_SOCKET_FALLBACK = Path("/var/run/log")
SYSLOG_ENV_VAR = "SENSORGATE_LOG_SYSLOG"
LOGGER_PREFIX = "sensorgate."

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _short_name(name: str) -> str:
    return name[len(LOGGER_PREFIX) :] if name.startswith(LOGGER_PREFIX) else name


def _render_extra(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        # Link frames are NUL padded binary.
        return "[" + bytes(value).hex(" ").upper() + "]"
    return str(value)


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: _render_extra(value)
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per record, logger names relative to the package."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": _short_name(record.name),
            "message": record.getMessage(),
        }
        extras = _record_extras(record)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return msgspec.json.encode(payload).decode("utf-8")


class ConsoleLogFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message`` for interactive use."""

    def __init__(self) -> None:
        super().__init__(datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record, self.datefmt)} {record.levelname:<7} {_short_name(record.name)}: {record.getMessage()}"
        extras = _record_extras(record)
        if extras:
            line += " " + " ".join(f"{key}={value}" for key, value in extras.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _syslog_socket() -> Path | None:
    for candidate in (SYSLOG_SOCKET, SYSLOG_SOCKET_FALLBACK):
        if candidate.exists():
            return candidate
    return None


def _build_handler() -> logging.Handler:
    """Syslog when requested through the environment and available, else stderr."""
    if os.environ.get(SYSLOG_ENV_VAR):
        socket_path = _syslog_socket()
        if socket_path is not None:
            handler = SysLogHandler(address=str(socket_path), facility=SysLogHandler.LOG_DAEMON)
            handler.ident = "sensorgate "
            return handler
    return logging.StreamHandler()


def resolve_log_format(config: RuntimeConfig) -> str:
    if config.log_format != "auto":
        return config.log_format
    if os.environ.get(SYSLOG_ENV_VAR):
        return "json"
    return "text" if sys.stderr.isatty() else "json"


def configure_logging(config: RuntimeConfig) -> None:
    """Configure root logging based on runtime settings."""
    level_name = "DEBUG" if config.debug_logging else "INFO"
    formatter = "structured" if resolve_log_format(config) == "json" else "console"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {"()": StructuredLogFormatter},
                "console": {"()": ConsoleLogFormatter},
            },
            "handlers": {
                "sensorgate": {
                    "()": _build_handler,
                    "level": level_name,
                    "formatter": formatter,
                }
            },
            "loggers": {
                # aiomqtt reports every packet at DEBUG.
                "sensorgate.mqtt.client": {"level": level_name if config.debug_logging else "WARNING"},
            },
            "root": {
                "level": level_name,
                "handlers": ["sensorgate"],
            },
        }
    )

    logging.getLogger("sensorgate").info("Logging configured at level %s (%s)", level_name, formatter)


__all__ = ["ConsoleLogFormatter", "StructuredLogFormatter", "configure_logging", "resolve_log_format"]
