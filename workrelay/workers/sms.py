"""SMS notifications (sms-queue)."""

from __future__ import annotations

from typing import Any, Dict

from workrelay.messaging.models import DeliveryOutcome
from workrelay.utility.logging_client import logger
from workrelay.workers.base import WorkerContext, record


async def handle_sms(payload: Dict[str, Any], ctx: WorkerContext) -> DeliveryOutcome:
    sms_type = payload.get("type")
    phone = payload.get("phone")
    content = payload.get("content")
    action = f"sms-{sms_type}"
    logger.info(f"SMS job started: {sms_type}", component="sms")

    if not phone:
        await record(
            ctx, payload, action=action, data={"type": sms_type, "error": "missing phone"}, ok=False
        )
        logger.error(f"SMS job {action} has no phone number", component="sms")
        return DeliveryOutcome.FATAL_FAILURE

    try:
        result = await ctx.sms_transport.deliver({"to": phone, "body": content or ""})
    except Exception as e:
        await record(
            ctx,
            payload,
            action=action,
            data={"phone": phone, "content": content, "type": sms_type, "error": str(e)},
            ok=False,
        )
        logger.warning(f"SMS transport raised for {phone}: {e}", component="sms")
        return DeliveryOutcome.RETRYABLE_FAILURE

    await record(
        ctx,
        payload,
        action=action,
        data={"phone": phone, "content": content, "type": sms_type, "sendInfo": result.as_dict()},
        ok=result.success,
    )
    if not result.success:
        logger.warning(f"SMS to {phone} failed: {result.error}", component="sms")
        return DeliveryOutcome.RETRYABLE_FAILURE

    logger.info(f"SMS sent: {phone} ({sms_type})", component="sms")
    return DeliveryOutcome.SUCCESS
