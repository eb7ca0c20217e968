"""Reglas de eventos de dominio y protocolo de seguridad.

- DomainEventRules: tipo de payload → nombre de evento del carril high
- SafetyProtocol: callback de emergencia para canales de seguridad
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Dict, Optional

from ..core.domain.events import EMERGENCY_RESPONSE, STREAM_UPDATE, StreamEvent
from ..core.domain.message import Message
from ..core.errors import PersistenceError
from ..persistence.sink import PersistenceSink

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TYPES: Dict[str, str] = {
    "milestone": "milestoneUpdate",
    "schedule_change": "scheduleChange",
    "inspection": "inspectionComplete",
    "nonconformance": "nonconformanceDetected",
}


class DomainEventRules:
    """Traduce el ``type`` del payload al evento de negocio a emitir."""

    def __init__(self, mapping: Optional[Dict[str, str]] = None, default: str = STREAM_UPDATE):
        self._mapping = dict(DEFAULT_EVENT_TYPES if mapping is None else mapping)
        self._default = default

    def add(self, message_type: str, event_name: str) -> None:
        self._mapping[message_type] = event_name

    def event_for(self, message: Message) -> str:
        return self._mapping.get(message.message_type, self._default)


class SafetyProtocol:
    """Callback de emergencia del carril critical.

    Para payloads ``type == "emergency"`` emite emergencyResponse y registra
    el evento en la tabla de emergencias. La escritura es best-effort: el
    mensaje ya quedó persistido por el carril critical.
    """

    def __init__(
        self,
        sink: PersistenceSink,
        emit: Callable[[StreamEvent], object],
        table: str = "construction_emergency_events",
    ):
        self._sink = sink
        self._emit = emit
        self._table = table
        self.triggered = 0

    def __call__(self, message: Message) -> None:
        if message.message_type != "emergency":
            return

        self.triggered += 1
        payload = message.payload
        logger.warning(
            "[SAFETY] Protocol triggered channel=%s location=%s severity=%s",
            message.source_channel,
            payload.get("location"),
            payload.get("severity"),
        )

        self._emit(StreamEvent.build(
            EMERGENCY_RESPONSE,
            message.source_channel,
            payload,
            location=payload.get("location"),
            severity=payload.get("severity"),
            sequence=message.sequence,
        ))

        try:
            self._sink.store(self._table, {
                "stream_name": message.source_channel,
                "sequence": message.sequence,
                "event_type": message.message_type,
                "location": payload.get("location"),
                "severity": payload.get("severity"),
                "details": json.dumps(message.payload_dict(), default=str),
                "occurred_at": message.received_wall,
            })
        except PersistenceError as e:
            logger.error("[SAFETY] Failed to store emergency event seq=%d: %s", message.sequence, e)
