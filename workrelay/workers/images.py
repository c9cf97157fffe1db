"""Image processing (image-processing-queue)."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from workrelay.messaging.models import DeliveryOutcome
from workrelay.utility.logging_client import logger
from workrelay.workers.base import WorkerContext, record

OPERATIONS = ("resize", "optimize", "thumbnail")


async def handle_image(payload: Dict[str, Any], ctx: WorkerContext) -> DeliveryOutcome:
    image_path = payload.get("imagePath")
    operations = payload.get("operations") or []
    action = "image-processed"

    if not image_path or not isinstance(operations, list):
        await record(
            ctx,
            payload,
            action=action,
            data={"imagePath": image_path, "operations": operations, "error": "invalid job"},
            ok=False,
        )
        return DeliveryOutcome.FATAL_FAILURE

    unknown = [op for op in operations if op not in OPERATIONS]
    if unknown:
        await record(
            ctx,
            payload,
            action=action,
            data={"imagePath": image_path, "operations": operations, "error": f"unknown operations: {unknown}"},
            ok=False,
        )
        logger.error(f"Unsupported image operations {unknown} for {image_path}", component="images")
        return DeliveryOutcome.FATAL_FAILURE

    logger.info(f"Image processing started: {', '.join(operations)}", component="images")
    done: List[str] = []
    with logger.timed("image_processing", component="images").add_context(image_path=image_path):
        for op in operations:
            if ctx.image_operation_delay:
                await asyncio.sleep(ctx.image_operation_delay)
            done.append(op)

    await record(ctx, payload, action=action, data={"imagePath": image_path, "operations": done}, ok=True)
    logger.info(f"Image processing done: {image_path}", component="images")
    return DeliveryOutcome.SUCCESS
