"""MessageDispatcher - Normaliza payloads crudos y los enruta por prioridad.

Flujo por payload:
  transporte → normalize (JSON → dict) → enrich (secuencia + timestamp)
  → streamData → PriorityProcessor

Es el único punto del pipeline donde se descartan mensajes: un payload
malformado se cuenta, va a la DLQ (si hay) y no produce Message.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from ..core.domain.channel import Channel
from ..core.domain.events import STREAM_DATA, STREAM_ERROR, StreamEvent
from ..core.domain.message import Message
from ..core.errors import DispatchError, PersistenceError
from ..events import EventBus
from ..monitoring import metrics
from ..monitoring.stats import StreamStatistics
from ..resilience.dead_letter import DeadLetterQueue
from .processor import PriorityProcessor
from .sequence import SequenceCounter

logger = logging.getLogger(__name__)


def normalize_payload(raw_payload: Any) -> Dict[str, Any]:
    """Convierte un payload crudo en un objeto JSON (dict).

    Raises:
        DispatchError: payload vacío, no decodificable o que no es un objeto.
    """
    if raw_payload is None:
        raise DispatchError("Empty payload")

    if isinstance(raw_payload, (bytes, bytearray)):
        try:
            raw_payload = bytes(raw_payload).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DispatchError(f"Payload is not UTF-8: {e}") from e

    if isinstance(raw_payload, str):
        if not raw_payload.strip():
            raise DispatchError("Empty payload")
        try:
            raw_payload = json.loads(raw_payload)
        except json.JSONDecodeError as e:
            raise DispatchError(f"Invalid JSON: {e}") from e

    if not isinstance(raw_payload, Mapping):
        raise DispatchError(f"Payload must be a JSON object, got {type(raw_payload).__name__}")

    return dict(raw_payload)


class MessageDispatcher:
    """Enriquece payloads en Messages con orden total y los despacha.

    ``dispatch`` es seguro desde varios hilos: la asignación de secuencia y
    timestamp ocurre en una única sección crítica.
    """

    def __init__(
        self,
        processor: PriorityProcessor,
        events: EventBus,
        stats: StreamStatistics,
        sequence: Optional[SequenceCounter] = None,
        dead_letters: Optional[DeadLetterQueue] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._processor = processor
        self._events = events
        self._stats = stats
        self._sequence = sequence or SequenceCounter()
        self._dead_letters = dead_letters
        self._clock = clock

        self._recent: Dict[str, Deque[Message]] = {}
        self._recent_lock = threading.Lock()

    @property
    def sequence(self) -> SequenceCounter:
        return self._sequence

    def dispatch(self, raw_payload: Any, channel: Channel) -> Optional[Message]:
        """Normaliza, enriquece y enruta un payload.

        Returns:
            El Message creado, o None si el payload se descartó.

        Raises:
            PersistenceError: si el canal es critical y el sink falló.
        """
        try:
            payload = normalize_payload(raw_payload)
        except DispatchError as e:
            self._drop(raw_payload, channel, e)
            return None

        with self._sequence.reserve() as seq:
            message = Message.create(
                sequence=seq,
                source_channel=channel.name,
                priority=channel.priority,
                received_at=self._clock(),
                received_wall=datetime.now(timezone.utc),
                payload=payload,
            )

        self._remember(message, channel.buffer_capacity)
        self._stats.record_message(channel.name, channel.priority.value)

        self._events.emit(StreamEvent.build(
            STREAM_DATA, channel.name, message.payload, sequence=message.sequence,
        ))

        with metrics.DISPATCH_LATENCY.time():
            self._processor.process(message)
        return message

    def handle_transport_message(self, raw_payload: Any, channel: Channel) -> None:
        """Entrada desde los transportes: nunca lanza hacia el loop de ingesta."""
        try:
            self.dispatch(raw_payload, channel)
        except PersistenceError as e:
            # Ya contado por el carril critical
            self._events.emit(StreamEvent.build(
                STREAM_ERROR, channel.name, {}, error=str(e), kind="critical_persistence",
            ))
        except Exception as e:
            self._stats.record_error("dispatch")
            logger.exception("[DISPATCH] Unexpected error channel=%s", channel.name)
            self._events.emit(StreamEvent.build(
                STREAM_ERROR, channel.name, {}, error=str(e), kind="dispatch",
            ))

    def _drop(self, raw_payload: Any, channel: Channel, error: DispatchError) -> None:
        self._stats.record_drop(channel.name)
        logger.warning("[DISPATCH] Dropped payload channel=%s: %s", channel.name, error)
        if self._dead_letters is not None:
            self._dead_letters.send(raw_payload, str(error), channel.name)

    def _remember(self, message: Message, capacity: int) -> None:
        with self._recent_lock:
            buffer = self._recent.get(message.source_channel)
            if buffer is None:
                buffer = deque(maxlen=capacity)
                self._recent[message.source_channel] = buffer
            buffer.append(message)

    def recent_messages(self, channel_name: str) -> List[Message]:
        """Últimos mensajes del canal (hasta buffer_capacity), del más viejo al más nuevo."""
        with self._recent_lock:
            return list(self._recent.get(channel_name, ()))
