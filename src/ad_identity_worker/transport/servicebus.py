"""
ad_identity_worker.transport.servicebus

Azure Service Bus binding of the transport capability.

Responsibilities:
- Connect with a connection string or a fully qualified namespace + DefaultAzureCredential.
- Receive from the configured queue with a bounded number of concurrent handlers.
- Map complete/dead-letter onto the receiver; abandon messages the handler left unsettled.
- Report receive/settle faults through the error channel and keep receiving.
"""

from __future__ import annotations

import asyncio
import contextlib

from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusReceivedMessage
from azure.servicebus.aio import AutoLockRenewer, ServiceBusClient, ServiceBusReceiver

from ad_identity_worker.observability.logging import get_logger
from ad_identity_worker.settings import Settings
from ad_identity_worker.transport.base import (
    BaseMessage,
    Transport,
    TransportConfigurationError,
    TransportError,
)

log = get_logger(__name__)


def read_body(message: ServiceBusReceivedMessage) -> bytes:
    # Raw bytes; parse_action decodes them and rejects invalid UTF-8.
    body = message.body
    if isinstance(body, bytes):
        return body
    return b"".join(body)


class ServiceBusMessage(BaseMessage):
    """
    Service Bus specific implementation of the message contract.
    """

    def __init__(self, *, receiver: ServiceBusReceiver, message: ServiceBusReceivedMessage) -> None:
        # Senders are not required to set a correlation id; fall back to the bus message id.
        super().__init__(
            body=read_body(message),
            correlation_id=message.correlation_id or message.message_id or "",
        )
        self._receiver = receiver
        self._message = message

    async def _complete(self) -> None:
        await self._receiver.complete_message(self._message)

    async def _dead_letter(self, reason: str) -> None:
        await self._receiver.dead_letter_message(self._message, reason=reason)

    async def abandon(self) -> None:
        await self._receiver.abandon_message(self._message)


class ServiceBusTransport(Transport):
    def __init__(
        self,
        *,
        queue_name: str,
        connection_string: str | None = None,
        fully_qualified_namespace: str | None = None,
        max_concurrent_calls: int = 4,
        receive_wait_seconds: float = 5.0,
        error_backoff_seconds: float = 5.0,
        max_lock_renewal_seconds: float = 300.0,
    ) -> None:
        if connection_string is None and fully_qualified_namespace is None:
            raise TransportConfigurationError(
                "connection string or fully qualified namespace has to be configured"
            )
        if not queue_name:
            raise TransportConfigurationError("queue name has to be configured")
        super().__init__(entity_path=queue_name, max_concurrent_calls=max_concurrent_calls)
        self._connection_string = connection_string
        self._fully_qualified_namespace = fully_qualified_namespace
        self._receive_wait_seconds = receive_wait_seconds
        self._error_backoff_seconds = error_backoff_seconds
        self._max_lock_renewal_seconds = max_lock_renewal_seconds

        self._credential: DefaultAzureCredential | None = None
        self._client: ServiceBusClient | None = None
        self._receiver: ServiceBusReceiver | None = None
        self._lock_renewer: AutoLockRenewer | None = None
        self._receive_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ServiceBusTransport:
        return cls(
            queue_name=settings.queue_name,
            connection_string=settings.servicebus_connection_string,
            fully_qualified_namespace=settings.servicebus_fully_qualified_namespace,
            max_concurrent_calls=settings.max_concurrent_calls,
            receive_wait_seconds=settings.receive_wait_seconds,
            error_backoff_seconds=settings.error_backoff_seconds,
        )

    async def __aenter__(self) -> ServiceBusTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self.is_running:
            await self.stop_processing()
        else:
            await self._close()

    def _create_client(self) -> ServiceBusClient:
        if self._connection_string is not None:
            return ServiceBusClient.from_connection_string(self._connection_string)
        self._credential = DefaultAzureCredential()
        return ServiceBusClient(self._fully_qualified_namespace, self._credential)

    async def _start_receiving(self) -> None:
        self._client = self._create_client()
        self._lock_renewer = AutoLockRenewer(
            max_lock_renewal_duration=self._max_lock_renewal_seconds
        )
        self._receiver = self._client.get_queue_receiver(
            queue_name=self.entity_path,
            auto_lock_renewer=self._lock_renewer,
        )
        log.info("servicebus_receiver_opened", queue=self.entity_path)
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def _stop_receiving(self) -> None:
        if self._receive_task is None:
            return
        self._receive_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._receive_task
        self._receive_task = None

    async def _close(self) -> None:
        # Called after the drain; in-flight settles still go through the receiver until then.
        if self._receiver is not None:
            await self._receiver.close()
            self._receiver = None
        if self._lock_renewer is not None:
            await self._lock_renewer.close()
            self._lock_renewer = None
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None
        log.info("servicebus_closed", queue=self.entity_path)

    def _require_receiver(self) -> ServiceBusReceiver:
        if self._receiver is None:
            raise TransportError(f"receiver for {self.entity_path!r} is not open")
        return self._receiver

    async def _receive_loop(self) -> None:
        receiver = self._require_receiver()
        while True:
            slots = await self._acquire_free_slots()
            try:
                batch = await receiver.receive_messages(
                    max_message_count=slots,
                    max_wait_time=self._receive_wait_seconds,
                )
            except asyncio.CancelledError:
                self._release_slots(slots)
                raise
            except Exception as e:
                self._release_slots(slots)
                await self._report_error(e, source="receive")
                await asyncio.sleep(self._error_backoff_seconds)
                continue

            self._release_slots(slots - len(batch))
            for received in batch:
                self._spawn(self._deliver(received))

    async def _acquire_free_slots(self) -> int:
        # Wait for one slot, then grab whatever else is free without blocking.
        await self._slots.acquire()
        slots = 1
        while slots < self.max_concurrent_calls and not self._slots.locked():
            await self._slots.acquire()
            slots += 1
        return slots

    def _release_slots(self, count: int) -> None:
        for _ in range(count):
            self._slots.release()

    async def _deliver(self, received: ServiceBusReceivedMessage) -> None:
        try:
            message = ServiceBusMessage(receiver=self._require_receiver(), message=received)
            await self._invoke_handler(message)
            if not message.settled:
                # Lets the bus redeliver now instead of waiting for the lock to expire.
                await message.abandon()
        except Exception as e:
            await self._report_error(e, source="settle")
        finally:
            self._slots.release()


# --- Module Notes -----------------------------------------------------------
# Delivery count and the dead-letter threshold are enforced by the bus itself
# (queue MaxDeliveryCount); this adapter never retries within one delivery.
