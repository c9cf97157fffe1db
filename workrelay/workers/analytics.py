"""Analytics events (analytics-queue)."""

from __future__ import annotations

import asyncio
from typing import Any, Dict

from workrelay.messaging.models import DeliveryOutcome
from workrelay.utility.logging_client import logger
from workrelay.workers.base import WorkerContext, record

ROOM_EVENTS = {"message-sent"}


async def handle_analytics(payload: Dict[str, Any], ctx: WorkerContext) -> DeliveryOutcome:
    event = payload.get("event")
    data = payload.get("data") or {}
    action = f"analytics-{event}"
    logger.info(f"Analytics job started: {event}", component="analytics")

    if not event:
        await record(ctx, payload, action=action, data={"error": "missing event"}, ok=False)
        return DeliveryOutcome.FATAL_FAILURE

    if ctx.analytics_delay:
        await asyncio.sleep(ctx.analytics_delay)

    room_id = data.get("roomId") if isinstance(data, dict) else None
    if event in ROOM_EVENTS and room_id:
        try:
            await ctx.event_sink.emit(
                "analytics-update",
                {"event": event, "userId": payload.get("userId"), "data": data},
                recipients={str(room_id)},
            )
        except Exception as e:
            await record(
                ctx, payload, action=action, data={"event": event, "data": data, "error": str(e)}, ok=False
            )
            logger.warning(f"Analytics update for room {room_id} failed: {e}", component="analytics")
            return DeliveryOutcome.RETRYABLE_FAILURE

    await record(ctx, payload, action=action, data={"event": event, "data": data}, ok=True)

    logger.info(f"Analytics recorded: {event}", component="analytics")
    return DeliveryOutcome.SUCCESS
