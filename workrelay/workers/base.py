"""
Shared plumbing for worker handlers.

Every handler receives the decoded envelope and a `WorkerContext` holding
its collaborators. Handlers are bound to a context with `functools.partial`
by `build_handlers()`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from workrelay.config import settings
from workrelay.messaging.models import LogEntry
from workrelay.services.log_sink import InMemoryLogSink, LogSink
from workrelay.services.realtime import EventSink, InMemoryEventSink
from workrelay.services.transports import (
    DeliveryTransport,
    mail_transport_from_settings,
    sms_transport_from_settings,
)


@dataclass
class WorkerContext:
    log_sink: LogSink
    mail_transport: DeliveryTransport
    sms_transport: DeliveryTransport
    event_sink: EventSink
    analytics_delay: float = 0.0
    image_operation_delay: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, log_sink: Optional[LogSink] = None) -> "WorkerContext":
        workers = settings.workers
        return cls(
            log_sink=log_sink or InMemoryLogSink(),
            mail_transport=mail_transport_from_settings(),
            sms_transport=sms_transport_from_settings(),
            event_sink=InMemoryEventSink(),
            analytics_delay=workers.analytics_delay,
            image_operation_delay=workers.image_operation_delay,
        )


def user_id_of(payload: Mapping[str, Any]) -> Optional[str]:
    user_id = payload.get("userId")
    return str(user_id) if user_id is not None else None


async def record(
    ctx: WorkerContext,
    payload: Mapping[str, Any],
    *,
    action: str,
    data: Dict[str, Any],
    ok: bool,
) -> LogEntry:
    """Append the attempt's log entry, tagged with the message id."""
    entry = LogEntry(
        action=action,
        user_id=user_id_of(payload),
        data=data,
        status="success" if ok else "error",
        message_id=payload.get("messageId"),
    )
    await ctx.log_sink.append_log(entry)
    return entry
