"""
RabbitMQ connection manager (aio-pika).

Owns the single broker connection and its publish channel. Consumers get
their own channels through `open_channel()` so that a channel-level error on
one queue never takes down another.

Reconnect policy:
- unexpected connection loss schedules a reconnect after a fixed delay
  (`RABBITMQ_RECONNECT_DELAY`, 5 s by default), repeated until it succeeds;
- `close()` suppresses reconnects;
- after a successful reconnect the registered callbacks run (the dispatcher
  uses this to resubscribe its consumers).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import urlsplit, urlunsplit

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection
from aio_pika.exceptions import AMQPError

from workrelay.config import settings
from workrelay.shared.exceptions import BrokerConnectionError
from workrelay.utility.logging_client import logger

# Errors aio-pika raises when the broker is unreachable or a channel is gone
BROKER_ERRORS = (AMQPError, OSError, RuntimeError, asyncio.TimeoutError)

ReconnectCallback = Callable[["BrokerConnection"], Awaitable[None]]


def safe_url(url: str) -> str:
    """Strip the password from an AMQP URL for logging."""
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = f"{parts.username}:***@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


@dataclass
class BrokerConnection:
    """One logical session: connection plus its publish channel."""

    connection: AbstractConnection
    channel: AbstractChannel

    @property
    def connected(self) -> bool:
        return not self.connection.is_closed and not self.channel.is_closed


class ConnectionManager:
    """
    Establishes, monitors and re-establishes the broker connection.

    `connected` is the single source of truth for the other components:
    anything that needs the broker calls `ensure_connected()` first.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        heartbeat: Optional[int] = None,
        reconnect_delay: Optional[float] = None,
        connect: Optional[Callable[..., Awaitable[AbstractConnection]]] = None,
    ) -> None:
        queue_settings = settings.queue
        self.url = url or queue_settings.amqp_url
        self.heartbeat = heartbeat if heartbeat is not None else queue_settings.heartbeat
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else queue_settings.reconnect_delay
        )
        self._connect = connect or aio_pika.connect
        self._broker: Optional[BrokerConnection] = None
        self._connected = False
        self._closing = False
        self._lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_callbacks: List[ReconnectCallback] = []

    @property
    def connected(self) -> bool:
        return self._connected and self._broker is not None

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def broker_connection(self) -> Optional[BrokerConnection]:
        return self._broker

    def add_reconnect_callback(self, callback: ReconnectCallback) -> None:
        self._reconnect_callbacks.append(callback)

    async def connect(self) -> BrokerConnection:
        """
        Open the connection and the publish channel.

        Concurrent callers share one attempt. Errors are surfaced to the caller.

        Raises:
            BrokerConnectionError: broker unreachable or refused the session
        """
        async with self._lock:
            self._closing = False
            if self.connected:
                return self._broker
            return await self._open()

    async def ensure_connected(self) -> BrokerConnection:
        """Return the live session, reconnecting first if needed."""
        broker = self._broker
        if self._connected and broker is not None:
            if broker.channel.is_closed:
                return await self._reopen_channel()
            return broker
        return await self.connect()

    async def _open(self) -> BrokerConnection:
        kwargs: dict = {}
        if self.heartbeat is not None:
            kwargs["heartbeat"] = self.heartbeat

        logger.info(f"Connecting to RabbitMQ at {safe_url(self.url)}", component="rabbitmq")
        try:
            connection = await self._connect(self.url, **kwargs)
        except BROKER_ERRORS as e:
            self._connected = False
            raise BrokerConnectionError(
                "Cannot connect to RabbitMQ",
                details={"url": safe_url(self.url), "error": str(e)},
                original_error=e,
            ) from e

        try:
            channel = await connection.channel(publisher_confirms=True)
        except BROKER_ERRORS as e:
            await connection.close()
            self._connected = False
            raise BrokerConnectionError(
                "Cannot open RabbitMQ channel",
                details={"error": str(e)},
                original_error=e,
            ) from e

        connection.close_callbacks.add(self._on_connection_closed)
        self._broker = BrokerConnection(connection=connection, channel=channel)
        self._connected = True
        logger.info("RabbitMQ connection established", component="rabbitmq")
        return self._broker

    async def _reopen_channel(self) -> BrokerConnection:
        async with self._lock:
            broker = self._broker
            if broker is None or not self._connected:
                return await self._open()
            if not broker.channel.is_closed:
                return broker
            logger.warning("Publish channel was closed, reopening", component="rabbitmq")
            try:
                broker.channel = await broker.connection.channel(publisher_confirms=True)
            except BROKER_ERRORS as e:
                raise BrokerConnectionError(
                    "Cannot reopen RabbitMQ channel",
                    details={"error": str(e)},
                    original_error=e,
                ) from e
            return broker

    async def open_channel(self, prefetch_count: Optional[int] = None) -> AbstractChannel:
        """Open a dedicated channel on the shared connection."""
        broker = await self.ensure_connected()
        try:
            channel = await broker.connection.channel()
            if prefetch_count is not None:
                await channel.set_qos(prefetch_count=prefetch_count)
        except BROKER_ERRORS as e:
            raise BrokerConnectionError(
                "Cannot open RabbitMQ channel",
                details={"prefetch_count": prefetch_count, "error": str(e)},
                original_error=e,
            ) from e
        return channel

    def _on_connection_closed(self, sender: Any, exc: Optional[BaseException] = None) -> None:
        # aio-pika calls close callbacks as (sender, exception)
        broker = self._broker
        if broker is None or sender is not broker.connection:
            return
        self._connected = False
        if self._closing:
            logger.info("RabbitMQ connection closed", component="rabbitmq")
            return
        logger.warning(
            f"RabbitMQ connection lost ({exc!r}), reconnecting in {self.reconnect_delay}s",
            component="rabbitmq",
        )
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while not self._closing:
            attempt += 1
            await asyncio.sleep(self.reconnect_delay)
            if self._closing:
                return
            try:
                async with self._lock:
                    broker = self._broker if self.connected else await self._open()
            except BrokerConnectionError as e:
                logger.error(f"Reconnect attempt {attempt} failed: {e}", component="rabbitmq")
                continue

            logger.info(f"Reconnected to RabbitMQ after {attempt} attempt(s)", component="rabbitmq")
            await self._run_reconnect_callbacks(broker)
            return

    async def _run_reconnect_callbacks(self, broker: BrokerConnection) -> None:
        for callback in list(self._reconnect_callbacks):
            try:
                await callback(broker)
            except Exception as e:
                logger.log_exception(e, component="rabbitmq", context={"stage": "reconnect_callback"})

    async def close(self) -> None:
        """Close the publish channel, then the connection. Suppresses reconnects."""
        self._closing = True

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        async with self._lock:
            broker, self._broker = self._broker, None
            self._connected = False
            if broker is None:
                return
            try:
                if not broker.channel.is_closed:
                    await broker.channel.close()
            except BROKER_ERRORS as e:
                logger.warning(f"Error closing publish channel: {e}", component="rabbitmq")
            try:
                if not broker.connection.is_closed:
                    await broker.connection.close()
            except BROKER_ERRORS as e:
                logger.warning(f"Error closing connection: {e}", component="rabbitmq")

        logger.info("RabbitMQ connection closed by request", component="rabbitmq")
