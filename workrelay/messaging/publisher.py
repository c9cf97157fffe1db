"""
Publishing work items to durable RabbitMQ queues.

Front ends (HTTP handlers, realtime handlers) call `publish()`; workers run
in a separate process or in separate consumer channels.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Set

from aio_pika import DeliveryMode, Message

from workrelay.messaging.connection import BROKER_ERRORS, BrokerConnection, ConnectionManager
from workrelay.messaging.models import WorkItem
from workrelay.shared.exceptions import PublishError
from workrelay.utility.logging_client import logger


class Publisher:
    """
    Publisher bound to a connection manager.

    Notes:
    - The connection is created lazily by the first publish.
    - Messages are persistent and the publish channel uses publisher
      confirms, so an awaited publish returns once the broker has taken it.
    - `wait=False` is fire-and-forget: the publish runs in a tracked
      background task and failures are only logged.
    - Queue declarations are cached per connection; a new connection
      starts with an empty cache.
    """

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager
        self._pending: Set[asyncio.Task] = set()
        self._declared: Set[str] = set()
        self._declared_on: Optional[BrokerConnection] = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def publish(
        self,
        queue_name: str,
        payload: Mapping[str, Any],
        *,
        wait: bool = True,
    ) -> bool:
        """
        Publish `payload` to `queue_name`.

        Args:
            queue_name: Target durable queue
            payload: JSON-serializable mapping
            wait: Await the broker confirmation (True) or fire-and-forget (False)

        Returns:
            True when the broker confirmed the message, False for fire-and-forget

        Raises:
            BrokerConnectionError: broker unreachable (only when wait=True)
            PublishError: serialization or channel failure (only when wait=True)
        """
        if not wait:
            task = asyncio.get_running_loop().create_task(
                self._publish_in_background(queue_name, payload)
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return False

        await self._publish(queue_name, payload)
        return True

    send_to_queue = publish

    async def _publish(self, queue_name: str, payload: Mapping[str, Any]) -> WorkItem:
        broker = await self._manager.ensure_connected()
        await self._declare(broker, queue_name)

        item = WorkItem.create(payload)
        message = Message(
            body=item.encode(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=item.message_id,
            timestamp=item.timestamp,
        )

        try:
            await broker.channel.default_exchange.publish(message, routing_key=queue_name)
        except BROKER_ERRORS as e:
            raise PublishError(
                "Broker did not accept the message",
                queue=queue_name,
                details={"message_id": item.message_id, "error": str(e)},
                original_error=e,
            ) from e

        logger.info(f"Message {item.message_id} published to {queue_name}", component="publisher")
        return item

    async def _declare(self, broker: BrokerConnection, queue_name: str) -> None:
        if broker is not self._declared_on:
            self._declared.clear()
            self._declared_on = broker
        if queue_name in self._declared:
            return

        try:
            await broker.channel.declare_queue(queue_name, durable=True)
        except BROKER_ERRORS as e:
            raise PublishError(
                "Cannot declare queue",
                queue=queue_name,
                details={"error": str(e)},
                original_error=e,
            ) from e
        self._declared.add(queue_name)

    async def _publish_in_background(self, queue_name: str, payload: Mapping[str, Any]) -> None:
        try:
            await self._publish(queue_name, payload)
        except Exception as e:
            logger.log_exception(
                e,
                component="publisher",
                context={"queue": queue_name, "mode": "fire-and-forget"},
            )

    async def drain(self) -> None:
        """Wait for outstanding fire-and-forget publishes."""
        if not self._pending:
            return
        logger.info(f"Waiting for {len(self._pending)} background publishes", component="publisher")
        await asyncio.gather(*list(self._pending), return_exceptions=True)


def get_publisher() -> Publisher:
    """Process-wide publisher of the shared QueueService."""
    from workrelay.messaging.service import get_queue_service

    return get_queue_service().publisher
