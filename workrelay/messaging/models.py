"""
Pydantic models for the queueing core.

The wire envelope is a JSON object: the producer's payload merged with
`timestamp` (ISO-8601) and `messageId`.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import PydanticSerializationError, to_json

from workrelay.shared.exceptions import DeserializationError, PublishError


class DeliveryOutcome(str, Enum):
    """Result of one handler execution."""

    SUCCESS = "success"  # ack
    RETRYABLE_FAILURE = "retryable_failure"  # nack + requeue
    FATAL_FAILURE = "fatal_failure"  # reject, dead-letter copy


class QueueDescriptor(BaseModel):
    """Logical queue plus its consumer-side concurrency limit."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Queue name")
    durable: Literal[True] = Field(default=True, description="Always durable")
    prefetch_count: int = Field(default=1, ge=1, description="Unacked messages per consumer")


def generate_message_id() -> str:
    return str(uuid.uuid4())


class WorkItem(BaseModel):
    """A payload plus the fields attached at publish time. Immutable."""

    model_config = ConfigDict(frozen=True)

    payload: Dict[str, Any] = Field(default_factory=dict, description="Producer fields")
    timestamp: Optional[datetime] = Field(default=None, description="Creation instant")
    message_id: Optional[str] = Field(default=None, description="Correlation id")

    @classmethod
    def create(cls, payload: Mapping[str, Any]) -> "WorkItem":
        if not isinstance(payload, Mapping):
            raise PublishError(
                f"Payload must be a mapping, got {type(payload).__name__}",
            )
        return cls(
            payload=dict(payload),
            timestamp=datetime.now(timezone.utc),
            message_id=generate_message_id(),
        )

    def envelope(self) -> Dict[str, Any]:
        """Payload merged with the system fields (system fields win)."""
        data = dict(self.payload)
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp.isoformat().replace("+00:00", "Z")
        if self.message_id is not None:
            data["messageId"] = self.message_id
        return data

    def encode(self) -> bytes:
        try:
            return to_json(self.envelope())
        except PydanticSerializationError as e:
            raise PublishError(
                "Payload is not JSON-serializable",
                details={"error": str(e)},
                original_error=e,
            ) from e

    @classmethod
    def decode(cls, body: bytes, fallback_id: Optional[str] = None) -> "WorkItem":
        """
        Parse a message body.

        Args:
            body: Raw message bytes
            fallback_id: AMQP `message_id` property, used when the envelope lacks `messageId`

        Raises:
            DeserializationError: body is not a UTF-8 JSON object
        """
        try:
            data = json.loads(body)
        except ValueError as e:
            raise DeserializationError(
                "Message body is not valid JSON",
                details={"size": len(body)},
                original_error=e,
            ) from e
        if not isinstance(data, dict):
            raise DeserializationError(
                f"Message body must be a JSON object, got {type(data).__name__}",
            )

        message_id = data.pop("messageId", None)
        raw_ts = data.pop("timestamp", None)
        timestamp = None
        if isinstance(raw_ts, str):
            try:
                timestamp = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
            except ValueError:
                data["timestamp"] = raw_ts
        elif raw_ts is not None:
            data["timestamp"] = raw_ts

        return cls(
            payload=data,
            timestamp=timestamp,
            message_id=str(message_id) if message_id is not None else fallback_id,
        )


class QueueInfo(BaseModel):
    """Passive queue check result."""

    queue: str
    message_count: int = Field(..., ge=0, serialization_alias="messageCount")
    consumer_count: int = Field(..., ge=0, serialization_alias="consumerCount")


class LogEntry(BaseModel):
    """One action-log record, appended after every handler attempt."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    user_id: Optional[str] = Field(default=None, alias="userId")
    data: Dict[str, Any] = Field(default_factory=dict)
    status: Literal["success", "error"]
    message_id: Optional[str] = Field(default=None, alias="messageId")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
