"""
Structured logging configuration.

Emits both human-readable and JSON logs.
JSON logs include:
- Timestamp
- Level
- Subsystem
- Task ID
- NPC ID
- Player ID
- Pipeline stage
- Event type
- Latency metrics
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

_STRUCTURED_FIELDS = ("subsystem", "task_id", "npc_id", "player_id", "stage", "event_type", "latency_ms")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in _STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data["event" if name == "event_type" else name] = value
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data.update(extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable format with colors."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        level = record.levelname[:4]

        prefix_parts = [f"{timestamp} {level}"]

        subsystem = getattr(record, "subsystem", None)
        if subsystem and subsystem != "general":
            prefix_parts.append(f"[{subsystem}]")
        if getattr(record, "npc_id", None):
            prefix_parts.append(f"npc={record.npc_id}")
        if getattr(record, "player_id", None):
            prefix_parts.append(f"player={str(record.player_id)[:10]}")
        if getattr(record, "task_id", None):
            prefix_parts.append(f"task={str(record.task_id)[-8:]}")
        if getattr(record, "stage", None):
            prefix_parts.append(f"stage={record.stage}")

        prefix = " ".join(prefix_parts)
        message = record.getMessage()

        latency_ms = getattr(record, "latency_ms", None)
        if latency_ms is not None:
            message = f"{message} ({latency_ms:.1f}ms)"

        line = f"{prefix}: {message}"

        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, "")
            line = f"{color}{line}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


class StructuredLogger(logging.Logger):
    """Logger with structured logging methods."""

    def _log_structured(
        self,
        level: int,
        msg: str,
        task_id: Optional[str] = None,
        npc_id: Optional[str] = None,
        player_id: Optional[str] = None,
        stage: Optional[str] = None,
        subsystem: str = "general",
        event_type: Optional[str] = None,
        latency_ms: Optional[float] = None,
        **extra: Any,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        self.log(
            level,
            msg,
            extra={
                "task_id": task_id,
                "npc_id": npc_id,
                "player_id": player_id,
                "stage": stage,
                "subsystem": subsystem,
                "event_type": event_type,
                "latency_ms": latency_ms,
                "extra_data": extra,
            },
        )

    def event(self, event_type: str, msg: str, level: int = logging.INFO, **kwargs: Any) -> None:
        """Log an event."""
        self._log_structured(level, msg, event_type=event_type, **kwargs)

    def latency(self, operation: str, latency_ms: float, **kwargs: Any) -> None:
        """Log a latency measurement."""
        self._log_structured(logging.DEBUG, f"{operation} completed", latency_ms=latency_ms, **kwargs)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    json_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        json_file: Path for JSON logs (in log_dir if relative)
        max_bytes: Max size per log file
        backup_count: Number of backup files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers = []

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(HumanFormatter())
    root_logger.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        human_handler = RotatingFileHandler(
            os.path.join(log_dir, "npc_affect.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        human_handler.setFormatter(HumanFormatter(use_colors=False))
        root_logger.addHandler(human_handler)

        json_path = json_file or "npc_affect.json.log"
        if not os.path.isabs(json_path):
            json_path = os.path.join(log_dir, json_path)

        json_handler = RotatingFileHandler(
            json_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        json_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(json_handler)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    The logger class is swapped only for the duration of the lookup so
    third-party loggers keep the default class.
    """
    existing = logging.Logger.manager.loggerDict.get(name)
    if isinstance(existing, StructuredLogger):
        return existing

    previous = logging.getLoggerClass()
    logging.setLoggerClass(StructuredLogger)
    try:
        logger = logging.getLogger(name)
    finally:
        logging.setLoggerClass(previous)
    return logger  # type: ignore[return-value]
