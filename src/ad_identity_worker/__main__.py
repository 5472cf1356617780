"""
ad_identity_worker.__main__

Entrypoint for running the worker via `python -m ad_identity_worker`.

Responsibilities:
- Load settings and configure structured logging.
- Translate SIGINT/SIGTERM into the worker's single shutdown signal.
- Run the worker until it has drained.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal

from ad_identity_worker.observability.logging import configure_logging
from ad_identity_worker.settings import Settings, get_settings
from ad_identity_worker.worker import Worker, build_directory, build_transport


async def serve(settings: Settings) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops; Ctrl+C then surfaces as KeyboardInterrupt.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    transport = build_transport(settings)
    directory = await build_directory(settings)
    await Worker(settings=settings, transport=transport, directory=directory).run(stop)


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve(settings))


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# For production, this is commonly run as a Windows service or under systemd
# on a domain-joined host with directory write permissions.
