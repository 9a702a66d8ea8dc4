"""Structured logging via structlog over stdlib logging.

Modules log through ``logging.getLogger(__name__)``; the ProcessorFormatter
renders those records together with any context bound for the current
request or batch continuation.
"""

import logging
import sys

import structlog

SERVICE_NAME = "pixelbatch"

# Keys that must never reach a log line. Prompts are user content.
_REDACTED_KEYS = frozenset({"prompt", "negative_prompt", "authorization"})


def _add_service(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _redact(logger, method_name: str, event_dict: dict) -> dict:
    for key in _REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_logging(log_level: str = "info", json_output: bool = False) -> None:
    """Install the structlog formatter on the root logger.

    Args:
        log_level: debug/info/warning/error.
        json_output: JSON lines for production, colored console for local mode.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        _redact,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def bind_request_context(trace_id: str, user_id: str | None = None) -> None:
    """Bind the request's trace id (and caller, once known) to the current context."""
    ctx = {"trace_id": trace_id}
    if user_id:
        ctx["user_id"] = user_id
    structlog.contextvars.bind_contextvars(**ctx)


def bind_batch_context(batch_id: str, item_index: int | None = None) -> None:
    """Bind batch identifiers so every log line from a continuation carries them."""
    ctx: dict = {"batch_id": batch_id}
    if item_index is not None:
        ctx["item_index"] = item_index
    structlog.contextvars.bind_contextvars(**ctx)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
