"""
Queue monitoring endpoints.

Counts come from passive declares through the shared QueueService, so the
views never create or modify queues.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from workrelay.config import settings
from workrelay.messaging.service import QueueService, get_queue_service
from workrelay.shared.exceptions import BrokerConnectionError
from workrelay.utility.logging_client import logger

queue_router = APIRouter(prefix="/queues", tags=["Queues"])


def queue_service_dependency() -> QueueService:
    return get_queue_service()


def _monitored_queues(service: QueueService) -> List[str]:
    names = list(service.queue_names)
    if service.settings.dead_letter_enabled:
        names += [service.settings.dead_letter_queue(n) for n in service.queue_names]
    return names


@queue_router.get("/status")
async def get_queue_status(service: QueueService = Depends(queue_service_dependency)) -> Dict[str, Any]:
    """
    Per-queue pending messages and consumers.

    Returns:
        {connected, queues: {name: {messageCount, consumerCount} | {status: not_found, error}}, timestamp}
    """
    status = await service.status()
    status["success"] = True
    return status


@queue_router.get("/health")
async def check_queue_health(service: QueueService = Depends(queue_service_dependency)) -> Dict[str, Any]:
    """
    Alerts:
    - queue backlog above the threshold
    - messages waiting without consumers
    - DLQ above the threshold
    """
    if not service.connected:
        raise BrokerConnectionError("RabbitMQ is not connected")

    stats = await service.status(_monitored_queues(service))
    queue_settings = service.settings
    alerts = []

    for name, queue_stats in stats["queues"].items():
        messages = queue_stats.get("messageCount")
        if messages is None:
            continue
        is_dlq = name.startswith(queue_settings.dead_letter_prefix)

        if is_dlq:
            if messages > queue_settings.dlq_alert_threshold:
                alerts.append({
                    "severity": "critical",
                    "queue": name,
                    "reason": f"DLQ has {messages} failed messages (threshold: {queue_settings.dlq_alert_threshold})",
                })
            continue

        if messages > queue_settings.backlog_alert_threshold:
            alerts.append({
                "severity": "warning",
                "queue": name,
                "reason": f"Queue has {messages} messages (threshold: {queue_settings.backlog_alert_threshold})",
            })

        if queue_stats.get("consumerCount", 0) == 0 and messages > 0:
            alerts.append({
                "severity": "critical",
                "queue": name,
                "reason": "No consumers but queue has messages",
            })

    counted = [q for q in stats["queues"].values() if "messageCount" in q]
    if alerts:
        logger.warning(f"Queue health degraded: {len(alerts)} alert(s)", component="rabbitmq_monitor")

    return {
        "status": "healthy" if not alerts else "degraded",
        "alerts": alerts,
        "total_queues": len(counted),
        "total_messages": sum(q["messageCount"] for q in counted),
        "total_consumers": sum(q["consumerCount"] for q in counted),
        "timestamp": stats["timestamp"],
    }


@queue_router.get("/{queue_name}")
async def get_queue(queue_name: str, service: QueueService = Depends(queue_service_dependency)) -> Dict[str, Any]:
    """Single queue counts; 404 if the queue does not exist."""
    info = await service.describe(queue_name)
    return info.model_dump(by_alias=True)


__all__ = ["queue_router", "queue_service_dependency"]
