"""
Worker process: consumes all queues until SIGINT/SIGTERM.

Run:
    python -m workrelay.messaging.worker

Startup connection failure is fatal (exit code 1). After startup, broker
outages are handled by the reconnect loop and the process keeps running.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional

from workrelay.messaging.service import QueueService
from workrelay.shared.exceptions import BrokerConnectionError, SubscriptionError
from workrelay.utility.logging_client import logger
from workrelay.services.log_sink import LoggingLogSink
from workrelay.workers import WorkerContext, start_workers


async def run_worker(
    service: Optional[QueueService] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """Connect, subscribe all workers, wait for a stop signal, shut down. Returns the exit code."""
    service = service or QueueService()
    stop_event = stop_event or asyncio.Event()

    try:
        await service.connect()
        await start_workers(service, WorkerContext.from_settings(LoggingLogSink()))
    except (BrokerConnectionError, SubscriptionError) as e:
        logger.error(f"Worker startup failed: {e}", component="worker")
        await service.close()
        return 1

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}", component="signal")
        stop_event.set()

    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # No signal support outside the main thread / on Windows
            pass

    logger.info("Worker running, waiting for messages", component="worker")
    try:
        await stop_event.wait()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await service.close()

    logger.info("Worker stopped", component="worker")
    return 0


def main() -> None:
    sys.exit(asyncio.run(run_worker()))


if __name__ == "__main__":
    main()
