"""
Background workers: one handler per queue.

Usage:
    service = get_queue_service()
    await service.connect()
    await start_workers(service)
"""

from __future__ import annotations

from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from workrelay.config import settings
from workrelay.messaging.dispatcher import Handler, Subscription
from workrelay.messaging.models import DeliveryOutcome
from workrelay.messaging.service import QueueService
from workrelay.utility.logging_client import logger
from workrelay.workers.analytics import handle_analytics
from workrelay.workers.base import WorkerContext
from workrelay.workers.email import handle_email
from workrelay.workers.images import handle_image
from workrelay.workers.sms import handle_sms

WorkerHandler = Callable[[Dict[str, Any], WorkerContext], Awaitable[DeliveryOutcome]]


def queue_handlers() -> Dict[str, WorkerHandler]:
    """Queue name -> unbound handler, using the configured queue names."""
    queue = settings.queue
    return {
        queue.email_queue: handle_email,
        queue.sms_queue: handle_sms,
        queue.analytics_queue: handle_analytics,
        queue.image_queue: handle_image,
    }


def build_handlers(ctx: WorkerContext) -> Dict[str, Handler]:
    return {name: partial(handler, ctx=ctx) for name, handler in queue_handlers().items()}


async def start_workers(service: QueueService, ctx: Optional[WorkerContext] = None) -> List[Subscription]:
    """Subscribe every worker handler. Returns the subscriptions."""
    ctx = ctx or WorkerContext.from_settings()
    subscriptions = []
    for queue_name, handler in build_handlers(ctx).items():
        subscriptions.append(await service.consume(queue_name, handler))
    logger.info(f"All background workers started ({len(subscriptions)} queues)", component="workers")
    return subscriptions


__all__ = [
    "WorkerContext",
    "build_handlers",
    "handle_analytics",
    "handle_email",
    "handle_image",
    "handle_sms",
    "queue_handlers",
    "start_workers",
]
