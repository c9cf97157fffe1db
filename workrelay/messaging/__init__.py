"""
Messaging core (RabbitMQ + aio-pika).

Contains:
- connection manager with fixed-delay reconnect
- publisher of persistent work items
- consumer dispatcher with ack/nack/requeue and dead-lettering
- passive queue introspection
- QueueService facade and the worker process entry point
"""

from workrelay.messaging.connection import BrokerConnection, ConnectionManager
from workrelay.messaging.dispatcher import ConsumerDispatcher, Subscription
from workrelay.messaging.introspection import QueueIntrospector
from workrelay.messaging.models import (
    DeliveryOutcome,
    LogEntry,
    QueueDescriptor,
    QueueInfo,
    WorkItem,
)
from workrelay.messaging.publisher import Publisher, get_publisher
from workrelay.messaging.service import QueueService, get_queue_service

__all__ = [
    "BrokerConnection",
    "ConnectionManager",
    "ConsumerDispatcher",
    "DeliveryOutcome",
    "LogEntry",
    "Publisher",
    "QueueDescriptor",
    "QueueInfo",
    "QueueIntrospector",
    "QueueService",
    "Subscription",
    "WorkItem",
    "get_publisher",
    "get_queue_service",
]
