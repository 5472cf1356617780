"""
ad_identity_worker.observability.logging

Logging setup for the worker process.

Responsibilities:
- Route structlog events through stdlib logging to stdout, as JSON or console lines.
- Stamp every event with the service and queue it belongs to.
- Guarantee a `correlation_id` key on events from message-scoped loggers, so a
  dispatcher line logged outside `message_context` is visible as such.
- Keep the Azure SDK loggers from flooding the worker's output.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from ad_identity_worker.settings import Settings

# Loggers whose events always describe one inbound message.
MESSAGE_SCOPED_LOGGERS = frozenset({"ad_identity_worker.dispatcher"})

# Placeholder when a message-scoped event is emitted with no correlation id bound.
UNCORRELATED = "-"

# Third-party loggers that are capped at WARNING unless the worker runs at DEBUG.
NOISY_LOGGERS = ("azure", "uamqp")


def configure_logging(settings: Settings) -> None:
    level = logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    # merge_contextvars runs first; the correlation guard relies on its output.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            worker_fields(service=settings.service_name, queue=settings.queue_name),
            ensure_correlation_id,
            structlog.processors.dict_tracebacks,
            _renderer(settings.log_format),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def worker_fields(*, service: str, queue: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("queue", queue)
        return event_dict

    return processor


def ensure_correlation_id(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if event_dict.get("logger") in MESSAGE_SCOPED_LOGGERS:
        event_dict.setdefault("correlation_id", UNCORRELATED)
    return event_dict


def _renderer(log_format: str):
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Correlation ids are bound per message in `observability.context`; this module
# only decides how they, and everything else, are rendered.
