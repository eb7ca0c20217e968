from .channel import Channel, Priority, TransportKind
from .connection import Connection, ConnectionStatus
from .message import Message, ProcessingOutcome
from .events import (
    StreamEvent,
    STREAM_DATA,
    CRITICAL_ALERT,
    SENSOR_ALERT,
    STREAM_ERROR,
    CHANNEL_DEAD,
    EMERGENCY_RESPONSE,
    STREAM_UPDATE,
)

__all__ = [
    "Channel",
    "Priority",
    "TransportKind",
    "Connection",
    "ConnectionStatus",
    "Message",
    "ProcessingOutcome",
    "StreamEvent",
    "STREAM_DATA",
    "CRITICAL_ALERT",
    "SENSOR_ALERT",
    "STREAM_ERROR",
    "CHANNEL_DEAD",
    "EMERGENCY_RESPONSE",
    "STREAM_UPDATE",
]
