"""Fan-out of realtime events (e.g. analytics updates to a chat room)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Protocol, runtime_checkable

from workrelay.utility.logging_client import logger


@dataclass(frozen=True)
class RealtimeEvent:
    event: str
    payload: Dict[str, Any]
    recipients: FrozenSet[str]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class EventSink(Protocol):
    async def emit(self, event: str, payload: Mapping[str, Any], recipients: Iterable[str]) -> None: ...


class InMemoryEventSink:
    def __init__(self) -> None:
        self.events: List[RealtimeEvent] = []

    async def emit(self, event: str, payload: Mapping[str, Any], recipients: Iterable[str]) -> None:
        record = RealtimeEvent(event=event, payload=dict(payload), recipients=frozenset(recipients))
        self.events.append(record)
        logger.debug(
            f"Event {event} -> {sorted(record.recipients)}",
            component="realtime",
        )
