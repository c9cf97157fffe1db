"""
Action log storage for worker handlers.

Handlers append one entry per attempt. Storage is pluggable; the in-memory
sink backs the status views and tests, the logging sink forwards entries to
the structured application log.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, List, Optional, Protocol, runtime_checkable

from workrelay.config import settings
from workrelay.messaging.models import LogEntry
from workrelay.utility.logging_client import logger


@runtime_checkable
class LogSink(Protocol):
    async def append_log(self, entry: LogEntry) -> None: ...


class InMemoryLogSink:
    """Bounded buffer of the most recent entries."""

    def __init__(self, maxlen: Optional[int] = None) -> None:
        self._entries: Deque[LogEntry] = deque(maxlen=maxlen or settings.workers.log_buffer_size)

    async def append_log(self, entry: LogEntry) -> None:
        self._entries.append(entry)

    def entries(self, action: Optional[str] = None, limit: Optional[int] = None) -> List[LogEntry]:
        """Newest first, optionally filtered by a case-insensitive action substring."""
        items = list(reversed(self._entries))
        if action:
            needle = action.lower()
            items = [e for e in items if needle in e.action.lower()]
        if limit is not None:
            items = items[:limit]
        return items

    def __len__(self) -> int:
        return len(self._entries)


class LoggingLogSink:
    async def append_log(self, entry: LogEntry) -> None:
        logger.structured(
            "info" if entry.status == "success" else "warning",
            "action_log",
            component="workers",
            **entry.model_dump(mode="json", by_alias=True),
        )
