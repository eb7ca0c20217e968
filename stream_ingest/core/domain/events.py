"""Eventos de dominio emitidos por el pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

STREAM_DATA = "streamData"
CRITICAL_ALERT = "criticalAlert"
SENSOR_ALERT = "sensorAlert"
STREAM_ERROR = "streamError"
CHANNEL_DEAD = "channelDead"
EMERGENCY_RESPONSE = "emergencyResponse"
STREAM_UPDATE = "streamUpdate"


@dataclass(frozen=True)
class StreamEvent:
    """Evento consumido por la lógica de negocio externa."""

    name: str
    channel_name: str
    payload: Mapping[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        name: str,
        channel_name: str,
        payload: Optional[Mapping[str, Any]] = None,
        **details: Any,
    ) -> "StreamEvent":
        return cls(
            name=name,
            channel_name=channel_name,
            payload=dict(payload or {}),
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "channel_name": self.channel_name,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
