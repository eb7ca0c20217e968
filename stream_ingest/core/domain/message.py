"""Message - Unidad normalizada que recorre el pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping

from .channel import Priority


class ProcessingOutcome(str, Enum):
    """Estado terminal de un mensaje tras su carril."""
    PERSISTED = "persisted"
    PERSIST_FAILED = "persist_failed"
    QUEUED = "queued"
    FLUSHED = "flushed"
    BUFFERED = "buffered"


@dataclass(frozen=True)
class Message:
    """Mensaje enriquecido por el dispatcher.

    El orden total de recepción lo da ``sequence``; ``received_at`` es reloj
    monotónico y no sirve para ordenar entre canales.
    """

    sequence: int
    source_channel: str
    priority: Priority
    received_at: float
    received_wall: datetime
    payload: Mapping[str, Any]

    @classmethod
    def create(
        cls,
        sequence: int,
        source_channel: str,
        priority: Priority,
        received_at: float,
        received_wall: datetime,
        payload: Dict[str, Any],
    ) -> "Message":
        return cls(
            sequence=sequence,
            source_channel=source_channel,
            priority=priority,
            received_at=received_at,
            received_wall=received_wall,
            payload=MappingProxyType(dict(payload)),
        )

    @property
    def message_type(self) -> str:
        return str(self.payload.get("type", "generic"))

    def payload_dict(self) -> Dict[str, Any]:
        return dict(self.payload)

    def to_row(self) -> Dict[str, Any]:
        """Fila para la tabla de datos de stream."""
        return {
            "stream_name": self.source_channel,
            "sequence": self.sequence,
            "priority": self.priority.value,
            "message_data": json.dumps(self.payload_dict(), default=str),
            "received_at": self.received_wall,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "source_channel": self.source_channel,
            "priority": self.priority.value,
            "received_at": self.received_wall.isoformat(),
            "payload": self.payload_dict(),
        }
