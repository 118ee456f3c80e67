#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides production-grade structured logging with:
- Correlation ID propagation for request tracing
- Stage/sub-stage numbering for execution flow
- JSON formatting for log aggregation
- Automatic PII redaction (emails, phone numbers, one-time codes)
- Context processors for automatic field injection

Architectural Decision: structlog for production logging
- Industry-standard structured logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation (ELK, Splunk, etc.)

Author: System Architect
Date: 2025-12-05
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from authguard.core.config.settings import LoggingSettings

# Context variable for the correlation ID of the current request
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Event fields whose values are secrets and never reach a log sink
SENSITIVE_FIELDS = frozenset({"code", "otp", "password", "session_id", "token"})

_EMAIL_RE = re.compile(r"\b[\w.+-]+@[\w.-]+\.\w+\b")
_PHONE_RE = re.compile(r"\+?\b\d{1,3}?[-. ]?\d{3}[-. ]?\d{3}[-. ]?\d{4}\b")
_CODE_RE = re.compile(r"\b\d{4,10}\b")


def add_correlation_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add correlation ID to log event from context variable.

    STAGE-L.1: Correlation ID injection
    """
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact PII and secrets from log events.

    STAGE-L.3: PII redaction

    Patterns redacted in the message:
    - Email addresses -> [EMAIL]
    - Phone numbers -> [PHONE]
    - Bare digit runs that look like one-time codes -> [CODE]

    Fields listed in SENSITIVE_FIELDS are replaced wholesale.
    """
    message = event_dict.get("event", "")

    if isinstance(message, str):
        message = _EMAIL_RE.sub("[EMAIL]", message)
        message = _PHONE_RE.sub("[PHONE]", message)
        message = _CODE_RE.sub("[CODE]", message)
        event_dict["event"] = message

    for field in SENSITIVE_FIELDS.intersection(event_dict):
        event_dict[field] = "[REDACTED]"

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Upper-case the log level.

    STAGE-L.4: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(
    log_level: str | None = None,
    log_format: str | None = None,
    settings: LoggingSettings | None = None,
) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        settings: Logging section used when level/format are not given

    Architectural Decision: structlog on top of stdlib logging
    - Third-party loggers (tenacity, redis) share the same sink
    - Automatic field injection (correlation ID, timestamp)
    - PII redaction for compliance
    """
    settings = settings or LoggingSettings()

    log_level = log_level or settings.LOG_LEVEL
    log_format = log_format or settings.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_correlation_id,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_pii,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage="RL.1")
    """
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: str) -> None:
    """
    Set the correlation ID for the current request.

    Route handlers call this at the start of each request so every log line
    emitted by the core can be tied back to it.
    """
    correlation_id_ctx.set(correlation_id)


def get_correlation_id() -> str | None:
    return correlation_id_ctx.get()


def clear_correlation_id() -> None:
    correlation_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Usage:
        log_stage(logger, "CB.2", "Circuit opened", failures=5)
    """
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage, **kwargs)
