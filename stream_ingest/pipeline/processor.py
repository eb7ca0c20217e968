"""PriorityProcessor - Manejo de mensajes por carril de prioridad.

Máquina de estados por mensaje:
    Received → {critical | high | medium | low} → Persisted | Queued | Buffered

- critical: persistencia síncrona; un fallo se propaga al llamador. Luego
  callbacks de emergencia del canal, criticalAlert y sensorAlert.
- high: persistencia best-effort (fallo logueado) + evento de dominio.
- medium: cola batch por canal, flush al alcanzar el umbral.
- low: solo el último mensaje por canal, en memoria.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from ..core.domain.channel import Priority
from ..core.domain.events import CRITICAL_ALERT, SENSOR_ALERT, StreamEvent
from ..core.domain.message import Message, ProcessingOutcome
from ..core.errors import PersistenceError, describe
from ..events import EventBus
from ..monitoring import metrics
from ..monitoring.stats import StreamStatistics
from ..persistence.sink import PersistenceSink
from .batch_queue import DEFAULT_FLUSH_THRESHOLD, BatchQueues
from .domain_events import DomainEventRules

logger = logging.getLogger(__name__)

EmergencyCallback = Callable[[Message], None]


class PriorityProcessor:
    """Enruta cada mensaje al carril de la prioridad de su canal."""

    def __init__(
        self,
        sink: PersistenceSink,
        events: EventBus,
        stats: StreamStatistics,
        table: str = "construction_stream_data",
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
        event_rules: Optional[DomainEventRules] = None,
    ):
        self._sink = sink
        self._events = events
        self._stats = stats
        self._table = table
        self._rules = event_rules or DomainEventRules()

        self._queues = BatchQueues(flush_threshold)
        self._latest: Dict[str, Message] = {}
        self._latest_lock = threading.Lock()
        self._emergency_callbacks: Dict[str, List[EmergencyCallback]] = defaultdict(list)

        self._handlers = {
            Priority.CRITICAL: self._process_critical,
            Priority.HIGH: self._process_high,
            Priority.MEDIUM: self._process_medium,
            Priority.LOW: self._process_low,
        }

    @property
    def flush_threshold(self) -> int:
        return self._queues.flush_threshold

    def register_emergency_callback(self, channel_name: str, callback: EmergencyCallback) -> None:
        """Registra una acción inmediata para mensajes críticos del canal."""
        self._emergency_callbacks[channel_name].append(callback)

    def process(self, message: Message) -> ProcessingOutcome:
        """Procesa el mensaje en su carril.

        Raises:
            PersistenceError: solo en el carril critical.
        """
        return self._handlers[message.priority](message)

    # ------------------------------------------------------------------
    # Carriles
    # ------------------------------------------------------------------

    def _process_critical(self, message: Message) -> ProcessingOutcome:
        try:
            self._store(message)
        except PersistenceError as e:
            self._stats.record_error("critical_persistence")
            logger.error(
                "[CRITICAL] Persist failed channel=%s seq=%d: %s",
                message.source_channel, message.sequence, e,
            )
            raise

        logger.warning(
            "[CRITICAL] channel=%s seq=%d type=%s",
            message.source_channel, message.sequence, message.message_type,
        )

        for callback in list(self._emergency_callbacks.get(message.source_channel, ())):
            try:
                callback(message)
            except Exception:
                self._stats.record_error("callback")
                logger.exception(
                    "[CRITICAL] Emergency callback failed channel=%s seq=%d",
                    message.source_channel, message.sequence,
                )

        self._events.emit(StreamEvent.build(
            CRITICAL_ALERT, message.source_channel, message.payload, sequence=message.sequence,
        ))

        if message.payload.get("alert"):
            payload = message.payload
            logger.warning("[CRITICAL] Sensor alert sensor=%s value=%s", payload.get("sensorId"), payload.get("value"))
            self._events.emit(StreamEvent.build(
                SENSOR_ALERT,
                message.source_channel,
                payload,
                sensor=payload.get("sensorId"),
                value=payload.get("value"),
                threshold=payload.get("threshold"),
            ))

        return ProcessingOutcome.PERSISTED

    def _process_high(self, message: Message) -> ProcessingOutcome:
        outcome = ProcessingOutcome.PERSISTED
        try:
            self._store(message)
        except PersistenceError as e:
            self._stats.record_error("persistence")
            logger.error(
                "[HIGH] Persist failed channel=%s seq=%d (continuing): %s",
                message.source_channel, message.sequence, e,
            )
            outcome = ProcessingOutcome.PERSIST_FAILED

        self._events.emit(StreamEvent.build(
            self._rules.event_for(message),
            message.source_channel,
            message.payload,
            sequence=message.sequence,
        ))
        return outcome

    def _process_medium(self, message: Message) -> ProcessingOutcome:
        batch = self._queues.append(message)
        if batch is None:
            return ProcessingOutcome.QUEUED
        if self._write_batch(message.source_channel, batch):
            return ProcessingOutcome.FLUSHED
        return ProcessingOutcome.PERSIST_FAILED

    def _process_low(self, message: Message) -> ProcessingOutcome:
        with self._latest_lock:
            self._latest[message.source_channel] = message
        return ProcessingOutcome.BUFFERED

    # ------------------------------------------------------------------
    # Persistencia
    # ------------------------------------------------------------------

    def _store(self, message: Message) -> None:
        try:
            self._sink.store(self._table, message.to_row())
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(self._table, describe(e)) from e

    def _write_batch(self, channel_name: str, batch: List[Message]) -> bool:
        """Escribe un lote. Un fallo se loguea y el lote se da por perdido."""
        try:
            self._sink.store_many(self._table, [m.to_row() for m in batch])
        except Exception as e:
            self._stats.record_error("persistence")
            metrics.STREAM_BATCH_FLUSHES.labels(channel=channel_name, status="failed").inc()
            logger.error(
                "[BATCH] Flush failed channel=%s size=%d (batch lost): %s",
                channel_name, len(batch), describe(e),
            )
            return False

        metrics.STREAM_BATCH_FLUSHES.labels(channel=channel_name, status="ok").inc()
        logger.debug("[BATCH] Flushed channel=%s size=%d", channel_name, len(batch))
        return True

    def flush(self, channel_name: str) -> int:
        """Vacía la cola de un canal. Retorna cuántos mensajes se escribieron."""
        batch = self._queues.drain(channel_name)
        if batch and self._write_batch(channel_name, batch):
            return len(batch)
        return 0

    def flush_all(self) -> int:
        written = 0
        for channel_name, batch in self._queues.drain_all().items():
            if self._write_batch(channel_name, batch):
                written += len(batch)
        return written

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    def pending(self, channel_name: str) -> int:
        return self._queues.pending(channel_name)

    def pending_total(self) -> int:
        return self._queues.pending_total()

    def latest(self, channel_name: str) -> Optional[Message]:
        with self._latest_lock:
            return self._latest.get(channel_name)

    def latest_all(self) -> Dict[str, Message]:
        with self._latest_lock:
            return dict(self._latest)
