"""
CrowdSubmit Logging Module

Centralized structured logging system.
Supports JSON and text formatting, file rotation, and console output.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

_configured = False

REDACTED = "***REDACTED***"


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def add_service_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service context if available."""
    if "service" not in event_dict:
        event_dict["service"] = "crowdsubmit"
    return event_dict


def censor_sensitive_data(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Remove or mask sensitive data and device identifiers from logs."""
    sensitive_keys = {
        "password",
        "secret",
        "token",
        "api_key",
        "credential",
        "android_id",
        "installation_id",
    }
    for key in list(event_dict.keys()):
        if any(s in key.lower() for s in sensitive_keys):
            event_dict[key] = REDACTED
    payload = event_dict.get("payload")
    if isinstance(payload, dict) and "android_id" in payload:
        event_dict["payload"] = {**payload, "android_id": REDACTED}
    return event_dict


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 3,
    console_output: bool = True,
) -> None:
    """
    Set up the logging system.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ('json' or 'text')
        log_file: Path to log file (optional)
        max_size_mb: Maximum log file size in MB before rotation
        backup_count: Number of backup files to keep
        console_output: Whether to output to console
    """
    global _configured
    if _configured:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_service_context,
        censor_sensitive_data,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured = True


def get_logger(name: Optional[str] = None, **context: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)
        **context: Additional context to bind to the logger

    Returns:
        A configured structlog logger
    """
    if not _configured:
        setup_logging()

    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


class JobLogger:
    """Logger wrapper for submission jobs with job-specific context."""

    def __init__(self, component: str, job_id: Optional[int] = None):
        context: dict[str, Any] = {"component": component}
        if job_id is not None:
            context["job_id"] = job_id
        self._logger = get_logger(f"crowdsubmit.{component}", **context)

    def bind(self, **context: Any) -> "JobLogger":
        """Create a new logger with additional context."""
        new_logger = JobLogger.__new__(JobLogger)
        new_logger._logger = self._logger.bind(**context)
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._logger.debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._logger.info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._logger.warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._logger.error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        self._logger.exception(event, **kw)

    def scheduled(
        self,
        job_id: int,
        kind: str,
        requires_unmetered: bool,
        requires_idle: bool,
        **kw: Any,
    ) -> None:
        """Log a job handed to the trigger."""
        self._logger.info(
            "job_scheduled",
            job_id=job_id,
            kind=kind,
            requires_unmetered=requires_unmetered,
            requires_idle=requires_idle,
            **kw,
        )

    def started(self, job_id: int, attempt: int, **kw: Any) -> None:
        """Log the start of a job execution."""
        self._logger.info("job_started", job_id=job_id, attempt=attempt, **kw)

    def finished(
        self,
        job_id: int,
        status: str,
        reschedule: bool,
        reason: Optional[str] = None,
        **kw: Any,
    ) -> None:
        """Log the outcome of a job execution."""
        log = self._logger.info if not reschedule else self._logger.warning
        log(
            "job_finished",
            job_id=job_id,
            status=status,
            reschedule=reschedule,
            reason=reason,
            **kw,
        )
