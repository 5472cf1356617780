"""
ad_identity_worker.transport.development

In-memory message bus binding for local development and tests.

Responsibilities:
- Queue messages in-process and deliver them to the handler with bounded concurrency.
- Emulate at-least-once delivery: unsettled messages are redelivered until the
  delivery limit, then dead-lettered like the real bus does.
- Record completed and dead-lettered messages for inspection.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass

from ad_identity_worker.observability.logging import get_logger
from ad_identity_worker.transport.base import BaseMessage, Transport

log = get_logger(__name__)

# Reason the bus itself attaches when a message exceeds its delivery limit.
MAX_DELIVERY_COUNT_EXCEEDED = "MaxDeliveryCountExceeded"


@dataclass(frozen=True, slots=True)
class QueuedMessage:
    body: str
    correlation_id: str
    delivery_count: int = 1


@dataclass(frozen=True, slots=True)
class DeadLetteredMessage:
    body: str
    correlation_id: str
    reason: str
    delivery_count: int


class DevelopmentMessage(BaseMessage):
    def __init__(self, *, transport: DevelopmentTransport, queued: QueuedMessage) -> None:
        super().__init__(body=queued.body, correlation_id=queued.correlation_id)
        self._transport = transport
        self._queued = queued

    @property
    def delivery_count(self) -> int:
        return self._queued.delivery_count

    async def _complete(self) -> None:
        self._transport.completed.append(self._queued)

    async def _dead_letter(self, reason: str) -> None:
        self._transport._record_dead_letter(self._queued, reason)


class DevelopmentTransport(Transport):
    """
    Bus emulation; the receive loop only ever blocks on a free slot or an empty
    queue, so cancelling it never loses a message.
    """

    def __init__(
        self,
        *,
        queue_name: str = "development",
        max_concurrent_calls: int = 4,
        max_delivery_count: int = 10,
    ) -> None:
        super().__init__(entity_path=queue_name, max_concurrent_calls=max_concurrent_calls)
        self.max_delivery_count = max_delivery_count
        self.completed: list[QueuedMessage] = []
        self.dead_lettered: list[DeadLetteredMessage] = []
        self._queue: asyncio.Queue[QueuedMessage] = asyncio.Queue()
        self._receive_task: asyncio.Task[None] | None = None

    async def send(self, body: str, *, correlation_id: str | None = None) -> str:
        queued = QueuedMessage(body=body, correlation_id=correlation_id or str(uuid.uuid4()))
        await self._queue.put(queued)
        return queued.correlation_id

    async def join(self) -> None:
        # Returns once every queued message (including redeliveries) reached a terminal state.
        await self._queue.join()

    async def _start_receiving(self) -> None:
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def _stop_receiving(self) -> None:
        if self._receive_task is None:
            return
        self._receive_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._receive_task
        self._receive_task = None

    async def _receive_loop(self) -> None:
        while True:
            await self._slots.acquire()
            try:
                queued = await self._queue.get()
            except BaseException:
                self._slots.release()
                raise
            self._spawn(self._deliver(queued))

    async def _deliver(self, queued: QueuedMessage) -> None:
        message = DevelopmentMessage(transport=self, queued=queued)
        try:
            await self._invoke_handler(message)
        finally:
            if not message.settled:
                self._abandon(queued)
            self._slots.release()
            self._queue.task_done()

    def _abandon(self, queued: QueuedMessage) -> None:
        if queued.delivery_count >= self.max_delivery_count:
            self._record_dead_letter(queued, MAX_DELIVERY_COUNT_EXCEEDED)
            return
        log.info(
            "message_abandoned",
            correlation_id=queued.correlation_id,
            delivery_count=queued.delivery_count,
        )
        # Requeue before task_done so join() cannot observe an empty queue in between.
        self._queue.put_nowait(
            QueuedMessage(
                body=queued.body,
                correlation_id=queued.correlation_id,
                delivery_count=queued.delivery_count + 1,
            )
        )

    def _record_dead_letter(self, queued: QueuedMessage, reason: str) -> None:
        self.dead_lettered.append(
            DeadLetteredMessage(
                body=queued.body,
                correlation_id=queued.correlation_id,
                reason=reason,
                delivery_count=queued.delivery_count,
            )
        )


# --- Module Notes -----------------------------------------------------------
# Used when `Settings.transport_binding == "development"`; messages can be fed
# with `send()` from tests or a local REPL.
