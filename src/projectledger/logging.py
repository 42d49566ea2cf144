"""Structured logging configuration.

Application events and audit events share one structlog pipeline. Audit
events go through the stdlib ``audit`` logger, which can be routed to its
own file with ``logging.audit_file``. Per-request context (request id,
method, path, caller identity) is bound with contextvars by the web layer
and merged into every event logged while the request runs.
"""

import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog

from . import audit
from .config import Config

AUDIT_LOGGER_NAME = "audit"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def splunk_processor(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> str:
    """Format log entries in Splunk key=value format.

    Format: 2026-01-08T12:15:00Z INFO  invoice.created invoice_id=7 total=27125
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    level = event_dict.pop("level", "INFO").upper()
    event = event_dict.pop("event", "")

    kvs = []
    for key, value in sorted(event_dict.items()):
        if key.startswith("_"):
            continue
        if isinstance(value, str) and " " in value:
            value = f'"{value}"'
        kvs.append(f"{key}={value}")

    if kvs:
        return f"{timestamp} {level:5} {event} {' '.join(kvs)}"
    return f"{timestamp} {level:5} {event}"


def json_processor(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Stamp JSON log entries with an ISO timestamp and upper-case level."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    event_dict["level"] = event_dict.get("level", "info").upper()
    return event_dict


def bind_request_context(
    method: str,
    path: str,
    actor: str | None = None,
    request_id: str | None = None,
) -> str:
    """Bind request fields to every event logged until the context is cleared.

    Returns:
        The request id, generated when not supplied.
    """
    request_id = request_id or uuid.uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    fields: dict[str, Any] = {"request_id": request_id, "method": method, "path": path}
    if actor:
        fields["actor"] = actor
    structlog.contextvars.bind_contextvars(**fields)
    return request_id


def clear_request_context() -> None:
    """Drop fields bound by bind_request_context."""
    structlog.contextvars.clear_contextvars()


def _configure_audit_logger(config: Config, level: int) -> logging.Logger:
    """Send audit events to their own file when one is configured."""
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    if config.logging.audit_file:
        config.logging.audit_file.parent.mkdir(parents=True, exist_ok=True)
        audit_logger.addHandler(logging.FileHandler(config.logging.audit_file))
        audit_logger.propagate = False
    else:
        audit_logger.propagate = True
    audit_logger.setLevel(level)
    return audit_logger


def configure_logging(config: Config) -> structlog.BoundLogger:
    """Configure structured logging and audit events from config.

    Args:
        config: Application configuration.

    Returns:
        Configured structlog logger.
    """
    log_level = LEVELS.get(config.logging.level, logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.logging.file:
        config.logging.file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.logging.file))

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=handlers,
        force=True,
    )
    _configure_audit_logger(config, log_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
    ]
    if config.logging.format == "json":
        processors += [
            structlog.stdlib.add_logger_name,
            json_processor,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(splunk_processor)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    audit.configure(enabled=config.logging.enabled)

    return structlog.get_logger()


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name.

    Returns:
        Structlog bound logger.
    """
    return structlog.get_logger(name)
