"""Transportes de entrada.

Contiene:
- TransportAdapter: contrato común
- InMemoryTransport: fake síncrono para tests
- MQTTTransport, WebSocketTransport, PollingTransport: transportes reales
- build_transport: factory por TransportKind
"""

from .base import TransportAdapter
from .memory import InMemoryTransport
from .factory import build_transport

__all__ = [
    "TransportAdapter",
    "InMemoryTransport",
    "build_transport",
]
