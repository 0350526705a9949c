"""Structured logging configuration.

Every log line is a structlog event dict rendered as JSON in production and
as colored console output elsewhere. Besides the usual level, logger name
and timestamp, events carry:

- ``correlation_id`` of the request that caused them, also inside detached
  background tasks (cache writes, usage bumps, prefetches)
- ``background_task`` naming the detached task, when there is one
- ``service``, ``version`` and ``environment`` of this deployment

TMDB authenticates with an ``api_key`` query parameter, so request URLs end
up in httpx error messages. ``redact_secrets`` scrubs them before rendering.

Usage:
    from cinemirror.core.logging import configure_logging, get_logger

    configure_logging(settings)

    logger = get_logger(__name__)
    logger.info("gap_fill_started", category="movies", target_page=42)
"""

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from cinemirror.config import Settings

# Request correlation ID. Background tasks copy the context of the request
# that spawned them, so their log lines keep the originating ID.
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Name of the detached task a log line was emitted from, if any
task_name_ctx: ContextVar[str | None] = ContextVar("task_name", default=None)

SECRET_FIELDS = frozenset({"api_key", "tmdb_api_key", "password", "authorization"})
_SECRET_QUERY_PARAM = re.compile(r"(api_key=)[^&\s'\"]+", re.IGNORECASE)
REDACTED = "***"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return correlation_id_ctx.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID in context."""
    correlation_id_ctx.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    correlation_id_ctx.set(None)


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Structlog processor adding correlation ID and background task name."""
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    task_name = task_name_ctx.get()
    if task_name:
        event_dict["background_task"] = task_name
    return event_dict


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return _SECRET_QUERY_PARAM.sub(rf"\1{REDACTED}", value)
    return value


def redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask secret fields and ``api_key=`` query parameters in string values."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_FIELDS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(value)
    return event_dict


def service_context(settings: Settings) -> Processor:
    """Build a processor stamping the deployment identity on every event."""
    context = {
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env.value,
    }

    def add_service_context(
        logger: logging.Logger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def _renderer(settings: Settings) -> Processor:
    if settings.use_json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        settings: Application settings. If None, uses default settings.
    """
    if settings is None:
        from cinemirror.config import get_settings

        settings = get_settings()

    log_level = getattr(logging, settings.log_level.value, logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_correlation_id,
        service_context(settings),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = _renderer(settings)

    # JSON output formats tracebacks here so URLs in them are masked too.
    # Rendering happens once, in the handler's formatter.
    processors: list[Processor] = [*shared_processors]
    if settings.use_json_logs:
        processors.append(structlog.processors.format_exc_info)
    processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Records from the stdlib logging tree (uvicorn, sqlalchemy) get the
    # shared processors as a pre-chain
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                redact_secrets,
                renderer,
            ],
            foreign_pre_chain=shared_processors,
        )
    )
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        A bound structlog logger that outputs structured logs.
    """
    return structlog.get_logger(name)
