"""
Consumer dispatcher: one subscription per queue, manual acknowledgement.

Each delivered message reaches exactly one terminal resolution, and only
after its handler has finished:
- handler returned SUCCESS (or None)      -> ack
- handler raised / RETRYABLE_FAILURE / timeout -> nack(requeue=True),
  or dead-letter + ack once `max_redeliveries` is exceeded
- body is not a JSON object / FATAL_FAILURE / FatalHandlerError
                                           -> dead-letter copy + reject(requeue=False)
"""

from __future__ import annotations

import asyncio
import inspect
from collections import OrderedDict
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

from workrelay.config.services import QueueSettings
from workrelay.messaging.connection import BROKER_ERRORS, BrokerConnection, ConnectionManager
from workrelay.messaging.models import DeliveryOutcome, QueueDescriptor, WorkItem
from workrelay.shared.exceptions import (
    BrokerConnectionError,
    DeserializationError,
    FatalHandlerError,
    SubscriptionError,
)
from workrelay.utility.logging_client import logger, reset_correlation_id, set_correlation_id

HandlerResult = Optional[DeliveryOutcome]
Handler = Callable[[Dict[str, Any]], Union[Awaitable[HandlerResult], HandlerResult]]

# Upper bound on tracked message ids for redelivery counting
MAX_TRACKED_ATTEMPTS = 10_000

_UNSET: Any = object()


class Subscription:
    """Handle for one queue consumer. `cancel()` stops it and closes its channel."""

    def __init__(
        self,
        dispatcher: "ConsumerDispatcher",
        queue: QueueDescriptor,
        handler: Handler,
        *,
        timeout: Optional[float],
        max_redeliveries: Optional[int],
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.timeout = timeout
        self.max_redeliveries = max_redeliveries
        self.channel: Optional[AbstractChannel] = None
        self.amqp_queue: Optional[AbstractQueue] = None
        self.consumer_tag: Optional[str] = None
        self.active = True
        self.lock = asyncio.Lock()
        self._dispatcher = dispatcher

    @property
    def name(self) -> str:
        return self.queue.name

    async def cancel(self) -> None:
        await self._dispatcher.cancel(self)

    def __repr__(self) -> str:
        return f"<Subscription queue={self.name!r} tag={self.consumer_tag!r} active={self.active}>"


class ConsumerDispatcher:
    """Registers handlers on queues and resolves every delivery to ack or nack."""

    def __init__(self, manager: ConnectionManager, queue_settings: QueueSettings) -> None:
        self._manager = manager
        self._settings = queue_settings
        self._subscriptions: List[Subscription] = []
        self._attempts: "OrderedDict[str, int]" = OrderedDict()
        self._restart_tasks: set = set()
        manager.add_reconnect_callback(self._resubscribe)

    @property
    def subscriptions(self) -> List[Subscription]:
        return [s for s in self._subscriptions if s.active]

    async def consume(
        self,
        queue_name: str,
        handler: Handler,
        *,
        prefetch: Optional[int] = None,
        timeout: Optional[float] = _UNSET,
        max_redeliveries: Optional[int] = _UNSET,
    ) -> Subscription:
        """
        Subscribe `handler` to `queue_name`.

        Args:
            queue_name: Durable queue to consume
            handler: Callable receiving the decoded envelope
            prefetch: Unacked messages on this channel (default: settings, 1)
            timeout: Per-message handler timeout in seconds (default: settings)
            max_redeliveries: Redeliveries before dead-lettering (default: settings)

        Raises:
            BrokerConnectionError: broker unreachable
            SubscriptionError: queue declaration or consumer registration failed
        """
        descriptor = QueueDescriptor(
            name=queue_name,
            prefetch_count=prefetch or self._settings.prefetch_count,
        )
        subscription = Subscription(
            self,
            descriptor,
            handler,
            timeout=self._settings.handler_timeout if timeout is _UNSET else timeout,
            max_redeliveries=(
                self._settings.max_redeliveries if max_redeliveries is _UNSET else max_redeliveries
            ),
        )
        await self._start(subscription)
        self._subscriptions.append(subscription)
        return subscription

    consume_queue = consume

    async def _start(self, subscription: Subscription) -> None:
        channel = await self._manager.open_channel(subscription.queue.prefetch_count)
        try:
            amqp_queue = await channel.declare_queue(subscription.name, durable=True)
            consumer_tag = await amqp_queue.consume(
                partial(self._on_message, subscription),
                no_ack=False,
            )
        except BROKER_ERRORS as e:
            if not channel.is_closed:
                await channel.close()
            raise SubscriptionError(
                f"Cannot consume queue '{subscription.name}'",
                details={"queue": subscription.name, "error": str(e)},
                original_error=e,
            ) from e

        channel.close_callbacks.add(partial(self._on_channel_closed, subscription))
        subscription.channel = channel
        subscription.amqp_queue = amqp_queue
        subscription.consumer_tag = consumer_tag
        logger.info(
            f"Listening on {subscription.name} (prefetch={subscription.queue.prefetch_count})",
            component="dispatcher",
        )

    async def cancel(self, subscription: Subscription) -> None:
        """Stop consuming. Unacked in-flight messages are redelivered by the broker."""
        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        channel, subscription.channel = subscription.channel, None
        if channel is None or channel.is_closed:
            return
        try:
            if subscription.amqp_queue is not None and subscription.consumer_tag:
                await subscription.amqp_queue.cancel(subscription.consumer_tag)
        except BROKER_ERRORS as e:
            logger.warning(f"Error cancelling consumer on {subscription.name}: {e}", component="dispatcher")
        try:
            await channel.close()
        except BROKER_ERRORS as e:
            logger.warning(f"Error closing channel of {subscription.name}: {e}", component="dispatcher")
        logger.info(f"Stopped consuming {subscription.name}", component="dispatcher")

    async def close(self) -> None:
        for task in list(self._restart_tasks):
            task.cancel()
        for subscription in list(self._subscriptions):
            await self.cancel(subscription)

    # ------------------------------------------------------------------
    # Delivery handling
    # ------------------------------------------------------------------

    async def _on_message(self, subscription: Subscription, message: AbstractIncomingMessage) -> None:
        try:
            item = WorkItem.decode(message.body, fallback_id=message.message_id)
        except DeserializationError as e:
            logger.error(f"Malformed message on {subscription.name}: {e}", component="dispatcher")
            await self._resolve_fatal(subscription, message, reason=str(e), attempts=1)
            return

        token = set_correlation_id(item.message_id)
        try:
            outcome = await self._invoke(subscription, item)
            await self._resolve(subscription, message, item, outcome)
        finally:
            reset_correlation_id(token)

    async def _invoke(self, subscription: Subscription, item: WorkItem) -> DeliveryOutcome:
        try:
            result = subscription.handler(item.envelope())
            if inspect.isawaitable(result):
                if subscription.timeout:
                    result = await asyncio.wait_for(result, subscription.timeout)
                else:
                    result = await result
        except asyncio.TimeoutError:
            logger.warning(
                f"Handler for {subscription.name} timed out after {subscription.timeout}s",
                component="dispatcher",
            )
            return DeliveryOutcome.RETRYABLE_FAILURE
        except FatalHandlerError as e:
            logger.error(f"Handler for {subscription.name} failed permanently: {e}", component="dispatcher")
            return DeliveryOutcome.FATAL_FAILURE
        except Exception as e:
            logger.log_exception(
                e,
                component="dispatcher",
                context={"queue": subscription.name, "message_id": item.message_id},
            )
            return DeliveryOutcome.RETRYABLE_FAILURE

        return self._outcome_of(subscription, result)

    @staticmethod
    def _outcome_of(subscription: Subscription, result: Any) -> DeliveryOutcome:
        """Map a handler's return value; anything unrecognised is retried."""
        if result is None:
            return DeliveryOutcome.SUCCESS
        if isinstance(result, DeliveryOutcome):
            return result
        if isinstance(result, str):
            try:
                return DeliveryOutcome(result)
            except ValueError:
                pass
        logger.warning(
            f"Handler for {subscription.name} returned {result!r}, treating as retryable",
            component="dispatcher",
        )
        return DeliveryOutcome.RETRYABLE_FAILURE

    async def _resolve(
        self,
        subscription: Subscription,
        message: AbstractIncomingMessage,
        item: WorkItem,
        outcome: DeliveryOutcome,
    ) -> None:
        try:
            if outcome is DeliveryOutcome.SUCCESS:
                self._forget(item.message_id)
                await message.ack()
                logger.debug(f"Acked on {subscription.name}", component="dispatcher")
                return

            attempts = self._record_attempt(item.message_id, message)
            if outcome is DeliveryOutcome.FATAL_FAILURE:
                self._forget(item.message_id)
                await self._resolve_fatal(
                    subscription, message, reason="handler reported fatal failure", attempts=attempts
                )
                return

            limit = subscription.max_redeliveries
            if limit is not None and attempts > limit:
                if await self._dead_letter(
                    subscription, message, reason="redelivery limit exceeded", attempts=attempts
                ):
                    self._forget(item.message_id)
                    await message.ack()
                    return

            logger.info(
                f"Requeueing message on {subscription.name} (attempt {attempts})",
                component="dispatcher",
            )
            await message.nack(requeue=True)
        except BROKER_ERRORS as e:
            # Channel is gone: the broker redelivers the unacked message
            logger.error(
                f"Could not resolve message on {subscription.name} ({outcome.value}): {e}",
                component="dispatcher",
            )

    async def _resolve_fatal(
        self,
        subscription: Subscription,
        message: AbstractIncomingMessage,
        *,
        reason: str,
        attempts: int,
    ) -> None:
        try:
            await self._dead_letter(subscription, message, reason=reason, attempts=attempts)
            await message.reject(requeue=False)
        except BROKER_ERRORS as e:
            logger.error(f"Could not reject message on {subscription.name}: {e}", component="dispatcher")

    def _record_attempt(self, message_id: Optional[str], message: AbstractIncomingMessage) -> int:
        attempts = 1
        if message_id is not None:
            attempts = self._attempts.pop(message_id, 0) + 1
            self._attempts[message_id] = attempts
            while len(self._attempts) > MAX_TRACKED_ATTEMPTS:
                self._attempts.popitem(last=False)

        # Quorum queues count deliveries on the broker side
        headers = message.headers or {}
        delivery_count = headers.get("x-delivery-count")
        if isinstance(delivery_count, int):
            attempts = max(attempts, delivery_count + 1)
        return attempts

    def _forget(self, message_id: Optional[str]) -> None:
        if message_id is not None:
            self._attempts.pop(message_id, None)

    async def _dead_letter(
        self,
        subscription: Subscription,
        message: AbstractIncomingMessage,
        *,
        reason: str,
        attempts: int,
    ) -> bool:
        """Copy the message to the queue's DLQ. Returns False if dead-lettering is off or failed."""
        if not self._settings.dead_letter_enabled:
            return False

        dlq_name = self._settings.dead_letter_queue(subscription.name)
        headers = dict(message.headers or {})
        headers.update(
            {
                "x-original-queue": subscription.name,
                "x-failure-reason": reason[:255],
                "x-attempts": attempts,
            }
        )
        try:
            broker = await self._manager.ensure_connected()
            await broker.channel.declare_queue(dlq_name, durable=True)
            await broker.channel.default_exchange.publish(
                Message(
                    body=message.body,
                    headers=headers,
                    content_type=message.content_type or "application/json",
                    delivery_mode=DeliveryMode.PERSISTENT,
                    message_id=message.message_id,
                ),
                routing_key=dlq_name,
            )
        except (BrokerConnectionError, *BROKER_ERRORS) as e:
            logger.error(f"Dead-lettering to {dlq_name} failed: {e}", component="dispatcher")
            return False

        logger.warning(f"Message moved to {dlq_name}: {reason}", component="dispatcher")
        return True

    # ------------------------------------------------------------------
    # Failure isolation and recovery
    # ------------------------------------------------------------------

    def _on_channel_closed(
        self, subscription: Subscription, sender: Any, exc: Optional[BaseException] = None
    ) -> None:
        if sender is not subscription.channel or not subscription.active:
            return
        subscription.channel = None
        if self._manager.closing:
            return
        broker = self._manager.broker_connection
        if not self._manager.connected or broker is None or broker.connection.is_closed:
            # Whole connection is down: resubscribed by the reconnect callback
            return
        logger.warning(
            f"Channel of {subscription.name} closed ({exc!r}), restarting consumer",
            component="dispatcher",
        )
        task = asyncio.get_running_loop().create_task(self._restart(subscription))
        self._restart_tasks.add(task)
        task.add_done_callback(self._restart_tasks.discard)

    async def _ensure_running(self, subscription: Subscription) -> None:
        async with subscription.lock:
            channel = subscription.channel
            if not subscription.active or (channel is not None and not channel.is_closed):
                return
            await self._start(subscription)

    async def _restart(self, subscription: Subscription) -> None:
        while subscription.active and not self._manager.closing:
            await asyncio.sleep(self._manager.reconnect_delay)
            try:
                await self._ensure_running(subscription)
                return
            except (BrokerConnectionError, SubscriptionError) as e:
                logger.error(f"Restarting consumer on {subscription.name} failed: {e}", component="dispatcher")

    async def _resubscribe(self, broker: BrokerConnection) -> None:
        for subscription in list(self._subscriptions):
            try:
                await self._ensure_running(subscription)
            except (BrokerConnectionError, SubscriptionError) as e:
                logger.error(f"Resubscribing {subscription.name} failed: {e}", component="dispatcher")
