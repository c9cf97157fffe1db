"""
QueueService: the one object callers depend on.

Constructed once at startup and torn down on shutdown; replaces shared
module-level connection/channel variables.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from workrelay.config import settings
from workrelay.config.services import QueueSettings
from workrelay.messaging.connection import BrokerConnection, ConnectionManager
from workrelay.messaging.dispatcher import _UNSET, ConsumerDispatcher, Handler, Subscription
from workrelay.messaging.introspection import QueueIntrospector
from workrelay.messaging.models import QueueInfo
from workrelay.messaging.publisher import Publisher
from workrelay.utility.logging_client import logger


class QueueService:
    def __init__(
        self,
        manager: Optional[ConnectionManager] = None,
        *,
        queue_settings: Optional[QueueSettings] = None,
    ) -> None:
        self.settings = queue_settings or settings.queue
        self.connection = manager or ConnectionManager(
            self.settings.amqp_url,
            heartbeat=self.settings.heartbeat,
            reconnect_delay=self.settings.reconnect_delay,
        )
        self.publisher = Publisher(self.connection)
        self.dispatcher = ConsumerDispatcher(self.connection, self.settings)
        self.introspector = QueueIntrospector(self.connection)

    @property
    def connected(self) -> bool:
        return self.connection.connected

    @property
    def queue_names(self) -> List[str]:
        return self.settings.queue_names

    async def connect(self) -> BrokerConnection:
        return await self.connection.connect()

    async def publish(self, queue_name: str, payload: Mapping[str, Any], *, wait: bool = True) -> bool:
        return await self.publisher.publish(queue_name, payload, wait=wait)

    send_to_queue = publish

    async def consume(
        self,
        queue_name: str,
        handler: Handler,
        *,
        prefetch: Optional[int] = None,
        timeout: Optional[float] = _UNSET,
        max_redeliveries: Optional[int] = _UNSET,
    ) -> Subscription:
        return await self.dispatcher.consume(
            queue_name,
            handler,
            prefetch=prefetch,
            timeout=timeout,
            max_redeliveries=max_redeliveries,
        )

    consume_queue = consume

    async def describe(self, queue_name: str) -> QueueInfo:
        return await self.introspector.describe(queue_name)

    get_queue_info = describe

    async def status(self, queue_names: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        return await self.introspector.status(queue_names or self.queue_names)

    async def close(self) -> None:
        """Drain background publishes, cancel consumers, close the connection."""
        logger.info("Shutting down queue service", component="queue_service")
        await self.publisher.drain()
        await self.dispatcher.close()
        await self.connection.close()


_service: Optional[QueueService] = None


def get_queue_service() -> QueueService:
    global _service
    if _service is None:
        _service = QueueService()
    return _service
