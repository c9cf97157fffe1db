from workrelay.services.log_sink import InMemoryLogSink, LoggingLogSink, LogSink
from workrelay.services.realtime import EventSink, InMemoryEventSink, RealtimeEvent
from workrelay.services.transports import (
    DeliveryResult,
    DeliveryTransport,
    SimulatedTransport,
    SmtpTransport,
)

__all__ = [
    "DeliveryResult",
    "DeliveryTransport",
    "EventSink",
    "InMemoryEventSink",
    "InMemoryLogSink",
    "LogSink",
    "LoggingLogSink",
    "RealtimeEvent",
    "SimulatedTransport",
    "SmtpTransport",
]
