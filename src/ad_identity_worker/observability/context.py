"""
ad_identity_worker.observability.context

Message-scoped logging context.

Responsibilities:
- Bind the inbound message's correlation id into structlog contextvars.
- Restore the previous context when the message has been handled.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import structlog


@contextmanager
def message_context(*, correlation_id: str, **extra: str) -> Iterator[None]:
    """
    - Every log line emitted inside the block carries `correlation_id`
    - Safe under asyncio concurrency: contextvars are task-local
    """

    tokens = structlog.contextvars.bind_contextvars(correlation_id=correlation_id, **extra)
    try:
        yield
    finally:
        # Reset rather than clear so an enclosing scope (e.g. queue name) survives.
        structlog.contextvars.reset_contextvars(**tokens)


# --- Module Notes -----------------------------------------------------------
# Transports run each handler invocation in its own task, so one message's
# context never bleeds into another's log lines.
