"""
Read-only queue checks for the operational status view.

A passive declare never creates or changes a queue. RabbitMQ closes the
channel when the queue does not exist, so every check runs on its own
short-lived channel. Not meant for the publish/consume hot path.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from aio_pika.exceptions import ChannelNotFoundEntity

from workrelay.messaging.connection import BROKER_ERRORS, ConnectionManager
from workrelay.messaging.models import QueueInfo
from workrelay.shared.exceptions import BrokerConnectionError, QueueNotFoundError
from workrelay.utility.logging_client import logger


class QueueIntrospector:
    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def describe(self, queue_name: str) -> QueueInfo:
        """
        Pending-message and consumer counts of an existing queue.

        Raises:
            QueueNotFoundError: no such queue
            BrokerConnectionError: broker unreachable
        """
        channel = await self._manager.open_channel()
        try:
            queue = await channel.declare_queue(queue_name, passive=True)
        except ChannelNotFoundEntity as e:
            raise QueueNotFoundError(queue_name, original_error=e) from e
        except BROKER_ERRORS as e:
            raise BrokerConnectionError(
                f"Queue check failed for '{queue_name}'",
                details={"error": str(e)},
                original_error=e,
            ) from e
        finally:
            if not channel.is_closed:
                await channel.close()

        result = queue.declaration_result
        return QueueInfo(
            queue=queue_name,
            message_count=result.message_count or 0,
            consumer_count=result.consumer_count or 0,
        )

    get_queue_info = describe

    async def status(self, queue_names: Iterable[str]) -> Dict[str, Any]:
        """Counts per queue; missing queues are reported, not raised."""
        queues: Dict[str, Any] = {}
        for name in queue_names:
            try:
                info = await self.describe(name)
            except QueueNotFoundError as e:
                logger.debug(str(e), component="introspection")
                queues[name] = {"status": "not_found", "error": e.message}
                continue
            queues[name] = info.model_dump(by_alias=True, exclude={"queue"})

        return {
            "connected": self._manager.connected,
            "queues": queues,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
