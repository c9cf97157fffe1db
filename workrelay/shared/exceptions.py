"""
Custom exceptions for the application.

Centralized exception hierarchy for the queueing core and its workers.
"""

from typing import Any, Dict, Optional


class WorkRelayError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Additional context (dict)
            original_error: Original exception if wrapped
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """String representation with details."""
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.original_error:
            base += f" | Caused by: {type(self.original_error).__name__}"
        return base


class ConfigurationError(WorkRelayError):
    """Configuration or settings error."""

    pass


class BrokerConnectionError(WorkRelayError):
    """Broker unreachable, or the connection dropped."""

    pass


class PublishError(WorkRelayError):
    """Channel not ready or payload not serializable."""

    def __init__(
        self,
        message: str,
        queue: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message, details, original_error)
        self.queue = queue

    def __str__(self) -> str:
        base = super().__str__()
        if self.queue:
            base = f"[{self.queue}] {base}"
        return base


class SubscriptionError(WorkRelayError):
    """Consumer could not be registered on a queue."""

    pass


class DeserializationError(WorkRelayError):
    """Malformed message body at consume time. Never retried."""

    pass


class HandlerError(WorkRelayError):
    """Business-logic failure inside a worker handler. Retried."""

    pass


class FatalHandlerError(HandlerError):
    """Handler failure that must not be retried (bad payload, unknown operation)."""

    pass


class QueueNotFoundError(WorkRelayError):
    """Passive queue check found no such queue."""

    def __init__(
        self,
        queue: str,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(f"Queue '{queue}' not found", {"queue": queue}, original_error)
        self.queue = queue


__all__ = [
    "WorkRelayError",
    "ConfigurationError",
    "BrokerConnectionError",
    "PublishError",
    "SubscriptionError",
    "DeserializationError",
    "HandlerError",
    "FatalHandlerError",
    "QueueNotFoundError",
]
