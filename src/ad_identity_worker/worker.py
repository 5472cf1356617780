"""
ad_identity_worker.worker

Worker host: composition root for transport, directory and dispatcher.

Responsibilities:
- Select the transport and directory bindings from settings.
- Wire the dispatcher into the transport (message handler + error channel).
- Run until the shutdown signal, then drain in-flight messages and release the directory.
"""

from __future__ import annotations

import asyncio

from ad_identity_worker.directory.base import Directory
from ad_identity_worker.directory.memory import InMemoryDirectory
from ad_identity_worker.dispatcher import MessageDispatcher
from ad_identity_worker.observability.logging import get_logger
from ad_identity_worker.settings import Settings
from ad_identity_worker.transport.base import Transport
from ad_identity_worker.transport.development import DevelopmentTransport

log = get_logger(__name__)


def build_transport(settings: Settings) -> Transport:
    if settings.transport_binding == "servicebus":
        # Imported lazily: the Azure SDK is only needed for the production binding.
        from ad_identity_worker.transport.servicebus import ServiceBusTransport

        return ServiceBusTransport.from_settings(settings)
    return DevelopmentTransport(
        queue_name=settings.queue_name,
        max_concurrent_calls=settings.max_concurrent_calls,
        max_delivery_count=settings.max_delivery_count,
    )


async def build_directory(settings: Settings) -> Directory:
    if settings.directory_binding == "ldap":
        from ad_identity_worker.directory.ldap import LdapDirectory

        return await LdapDirectory.connect(settings)
    if settings.directory_seed_file:
        return InMemoryDirectory.from_seed_file(settings.directory_seed_file)
    return InMemoryDirectory()


class Worker:
    def __init__(self, *, settings: Settings, transport: Transport, directory: Directory) -> None:
        self._settings = settings
        self._transport = transport
        self._directory = directory
        self.dispatcher = MessageDispatcher(directory=directory)

    async def run(self, stop: asyncio.Event) -> None:
        log.info("starting", env=self._settings.env, queue=self._transport.entity_path)
        self._transport.set_message_handler(self.dispatcher.handle).set_error_handler(
            self.dispatcher.on_transport_error
        )
        try:
            await self._transport.start_processing()
            log.info("ready")
            await stop.wait()
        finally:
            # Stop intake first, then let in-flight handlers settle before closing the directory.
            await self._transport.stop_processing(
                timeout=self._settings.shutdown_timeout_seconds
            )
            await self._directory.close()
            log.info("stopped")


# --- Module Notes -----------------------------------------------------------
# `__main__` owns signal handling; this module stays importable from tests,
# which drive `Worker.run` with their own stop event.
