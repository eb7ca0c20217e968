"""Channel - Fuente de entrada configurada.

Se crea una sola vez al arrancar a partir de configuración estática. La
prioridad es una propiedad del canal y la heredan todos sus mensajes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Priority(str, Enum):
    """Carriles de prioridad."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TransportKind(str, Enum):
    """Tipos de transporte soportados."""
    SOCKET = "socket"
    TOPIC_BUS = "topic_bus"
    POLLING = "polling"

    @classmethod
    def parse(cls, value: Any) -> "TransportKind":
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        alias = _TRANSPORT_ALIASES.get(key) or _TRANSPORT_ALIASES.get(key.lower())
        if alias is None:
            raise ValueError(f"Unknown transport kind '{value}'")
        return alias


_TRANSPORT_ALIASES: Dict[str, TransportKind] = {
    "socket": TransportKind.SOCKET,
    "websocket": TransportKind.SOCKET,
    "topic_bus": TransportKind.TOPIC_BUS,
    "topicBus": TransportKind.TOPIC_BUS,
    "topicbus": TransportKind.TOPIC_BUS,
    "mqtt": TransportKind.TOPIC_BUS,
    "polling": TransportKind.POLLING,
}


@dataclass(frozen=True)
class Channel:
    """Canal de entrada registrado."""

    name: str
    transport_kind: TransportKind
    priority: Priority
    topics: Tuple[str, ...] = ()
    buffer_capacity: int = 1000

    endpoint: Optional[str] = None
    qos: int = 1
    poll_interval_seconds: float = 30.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "transport_kind": self.transport_kind.value,
            "priority": self.priority.value,
            "topics": list(self.topics),
            "buffer_capacity": self.buffer_capacity,
            "endpoint": self.endpoint,
        }
