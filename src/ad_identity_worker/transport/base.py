"""
ad_identity_worker.transport.base

Transport capability consumed by the dispatcher.

Responsibilities:
- Define the inbound message contract (body, correlation id, complete, dead-letter).
- Enforce single registration of the message/error handlers before start.
- Run handler invocations as tracked tasks and drain them on stop.
- Route handler and bus faults to the error channel instead of the receive loop.
"""

from __future__ import annotations

import abc
import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Protocol, Self

from ad_identity_worker.observability.logging import get_logger

log = get_logger(__name__)


class TransportError(Exception):
    pass


class HandlerAlreadyRegisteredError(TransportError):
    pass


class TransportNotConfiguredError(TransportError):
    pass


class TransportConfigurationError(TransportError):
    pass


class MessageAlreadySettledError(TransportError):
    pass


class InboundMessage(Protocol):
    @property
    def body(self) -> str | bytes: ...

    @property
    def correlation_id(self) -> str: ...

    async def complete(self) -> None: ...

    async def dead_letter(self, reason: str) -> None: ...


@dataclass(frozen=True, slots=True)
class TransportErrorEvent:
    """
    A fault not tied to a terminal disposition (connectivity, settle failure,
    handler crash). Delivered through the error channel.
    """

    exception: BaseException
    source: str
    entity_path: str


MessageHandler = Callable[[InboundMessage], Awaitable[None]]
ErrorHandler = Callable[[TransportErrorEvent], Awaitable[None]]


class BaseMessage(abc.ABC):
    """
    Message handle that accepts exactly one terminal call.
    """

    def __init__(self, *, body: str | bytes, correlation_id: str) -> None:
        self._body = body
        self._correlation_id = correlation_id
        self._settlement: str | None = None

    @property
    def body(self) -> str | bytes:
        return self._body

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    @property
    def settled(self) -> bool:
        return self._settlement is not None

    async def complete(self) -> None:
        self._claim("complete")
        try:
            await self._complete()
        except BaseException:
            self._settlement = None
            raise

    async def dead_letter(self, reason: str) -> None:
        self._claim("dead_letter")
        try:
            await self._dead_letter(reason)
        except BaseException:
            self._settlement = None
            raise

    def _claim(self, settlement: str) -> None:
        if self._settlement is not None:
            raise MessageAlreadySettledError(
                f"message {self._correlation_id!r} already settled ({self._settlement})"
            )
        self._settlement = settlement

    @abc.abstractmethod
    async def _complete(self) -> None: ...

    @abc.abstractmethod
    async def _dead_letter(self, reason: str) -> None: ...


class Transport(abc.ABC):
    """
    Builder-style lifecycle:
    - set_message_handler / set_error_handler (once each)
    - start_processing
    - stop_processing (stops intake, drains in-flight handlers)
    """

    def __init__(self, *, entity_path: str, max_concurrent_calls: int) -> None:
        if max_concurrent_calls < 1:
            raise TransportConfigurationError("max_concurrent_calls must be >= 1")
        self.entity_path = entity_path
        self.max_concurrent_calls = max_concurrent_calls
        self._message_handler: MessageHandler | None = None
        self._error_handler: ErrorHandler | None = None
        self._running = False
        self._inflight: set[asyncio.Task[None]] = set()
        self._slots = asyncio.Semaphore(max_concurrent_calls)

    @property
    def is_running(self) -> bool:
        return self._running

    def set_message_handler(self, handler: MessageHandler) -> Self:
        if self._message_handler is not None:
            raise HandlerAlreadyRegisteredError("message handler is already registered")
        self._message_handler = handler
        return self

    def set_error_handler(self, handler: ErrorHandler) -> Self:
        if self._error_handler is not None:
            raise HandlerAlreadyRegisteredError("error handler is already registered")
        self._error_handler = handler
        return self

    async def start_processing(self) -> None:
        if self._message_handler is None:
            raise TransportNotConfiguredError("set_message_handler must be called before start")
        if self._running:
            raise TransportError("processing already started")
        self._running = True
        log.info("transport_starting", entity_path=self.entity_path)
        await self._start_receiving()

    async def stop_processing(self, *, timeout: float | None = None) -> None:
        """
        Stop intake, then wait for in-flight handlers. After `timeout` seconds the
        remaining handlers are cancelled; unsettled messages are left to redelivery.
        """

        if not self._running:
            return
        self._running = False
        log.info("transport_stopping", entity_path=self.entity_path, inflight=len(self._inflight))
        await self._stop_receiving()
        await self._drain(timeout=timeout)
        await self._close()
        log.info("transport_stopped", entity_path=self.entity_path)

    @abc.abstractmethod
    async def _start_receiving(self) -> None: ...

    @abc.abstractmethod
    async def _stop_receiving(self) -> None: ...

    async def _close(self) -> None:
        return None

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _drain(self, *, timeout: float | None) -> None:
        pending = set(self._inflight)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            log.warning(
                "transport_drain_timeout",
                entity_path=self.entity_path,
                cancelled=len(still_running),
            )
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    async def _invoke_handler(self, message: InboundMessage) -> None:
        # Handler faults never reach the receive loop; other messages keep flowing.
        if self._message_handler is None:
            raise TransportNotConfiguredError("no message handler registered")
        try:
            await self._message_handler(message)
        except Exception as e:
            await self._report_error(e, source="handler")

    async def _report_error(self, exc: BaseException, *, source: str) -> None:
        if self._error_handler is None:
            log.error(
                "transport_error",
                entity_path=self.entity_path,
                source=source,
                error=repr(exc),
            )
            return
        event = TransportErrorEvent(exception=exc, source=source, entity_path=self.entity_path)
        try:
            await self._error_handler(event)
        except Exception:
            log.exception("transport_error_handler_failed", entity_path=self.entity_path)


# --- Module Notes -----------------------------------------------------------
# Concrete bindings: `transport.development` (in-memory) and
# `transport.servicebus` (Azure Service Bus).
