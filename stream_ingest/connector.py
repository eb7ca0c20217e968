"""StreamConnector - Fachada del pipeline de streams de obra.

Une registro, transportes, dispatcher, procesador por prioridad, supervisor
de reconexión y persistencia del estado final.

Uso:
    connector = StreamConnector.from_settings(get_settings())
    connector.on("criticalAlert", handle_alert)
    connector.initialize()
    ...
    connector.shutdown()
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from common.config import Settings, get_settings
from common.db import get_engine

from .channels import (
    ChannelDescriptor,
    default_channel_descriptors,
    load_channel_descriptors,
    parse_descriptor,
)
from .core.domain.channel import Channel
from .core.domain.events import STREAM_ERROR, StreamEvent
from .core.domain.message import Message
from .core.errors import ConfigError, ConnectError, StreamIngestError, describe
from .events import EventBus, EventHandler
from .monitoring.stats import StatisticsSnapshot, StreamStatistics
from .persistence.sink import PersistenceSink
from .persistence.sql_sink import SqlAlchemySink
from .persistence.state_store import InMemoryStateStore, RedisStateStore, StateStore
from .pipeline.dispatcher import MessageDispatcher
from .pipeline.domain_events import SafetyProtocol
from .pipeline.processor import EmergencyCallback, PriorityProcessor
from .registry import StreamRegistry
from .resilience.dead_letter import DeadLetterQueue
from .supervisor import ReconnectionSupervisor
from .transports.base import TransportAdapter
from .transports.factory import build_transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[Channel], TransportAdapter]


class StreamConnector:
    """Conector de streams en tiempo real con despacho por prioridad."""

    def __init__(
        self,
        sink: PersistenceSink,
        settings: Optional[Settings] = None,
        state_store: Optional[StateStore] = None,
        transport_factory: Optional[TransportFactory] = None,
        dead_letters: Optional[DeadLetterQueue] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.registry = StreamRegistry()
        self.events = EventBus()
        self.stats = StreamStatistics(clock=clock)

        self._sink = sink
        self._state_store = state_store or InMemoryStateStore()
        self._transport_factory = transport_factory or (lambda ch: build_transport(ch, self.settings))

        self.processor = PriorityProcessor(
            sink,
            self.events,
            self.stats,
            table=self.settings.stream_table,
            flush_threshold=self.settings.batch_flush_threshold,
        )
        self.dispatcher = MessageDispatcher(
            self.processor,
            self.events,
            self.stats,
            dead_letters=dead_letters,
            clock=clock,
        )

        self._transports: Dict[str, TransportAdapter] = {}
        self.supervisor = ReconnectionSupervisor(
            self._transports,
            self.events,
            self.stats,
            max_reconnect_attempts=self.settings.max_reconnect_attempts,
            reconnect_delay=self.settings.reconnect_delay_seconds,
            interval=self.settings.health_check_interval_seconds,
        )

        self.previous_state: Optional[Dict[str, Any]] = None
        self._lifecycle_lock = threading.Lock()
        self._initialized = False
        self._shut_down = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "StreamConnector":
        """Construye el conector con SQL sink, Redis (si hay) y transportes reales."""
        settings = settings or get_settings()

        engine = get_engine(settings)
        if engine is None:
            raise ConfigError("DATABASE_URL is required to run the stream connector")
        sink = SqlAlchemySink.from_settings(engine, settings)
        sink.ensure_schema()

        if settings.redis_url:
            state_store: StateStore = RedisStateStore.from_url(settings.redis_url, key=settings.state_key)
        else:
            logger.warning("[STREAM] REDIS_URL not set - run state will not survive restarts")
            state_store = InMemoryStateStore()

        return cls(
            sink,
            settings=settings,
            state_store=state_store,
            dead_letters=DeadLetterQueue.from_url(settings.redis_url, stream_name=settings.dlq_stream),
        )

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def initialize(
        self,
        descriptors: Optional[Iterable[Union[ChannelDescriptor, dict]]] = None,
        start_supervisor: bool = True,
    ) -> None:
        """Registra canales, conecta transportes y arranca el supervisor.

        Raises:
            ConfigError: configuración de canales inválida.
        """
        with self._lifecycle_lock:
            if self._initialized:
                return

            logger.info("[STREAM] Initializing stream connector...")
            if descriptors is None:
                if self.settings.channels_file:
                    descriptors = load_channel_descriptors(self.settings.channels_file)
                else:
                    descriptors = default_channel_descriptors()

            for descriptor in descriptors:
                self.add_channel(descriptor)

            self._load_state()
            self.stats.start()

            for transport in list(self._transports.values()):
                self._connect(transport)

            if start_supervisor:
                self.supervisor.start()

            self._initialized = True
            logger.info(
                "[STREAM] Initialized channels=%d connected=%d",
                len(self._transports),
                self.get_statistics().active_channels,
            )

    def add_channel(self, config: Union[ChannelDescriptor, dict]) -> Channel:
        """Crea el transporte de un canal (sin conectarlo) y lo registra.

        El canal solo entra al registro si su transporte se pudo construir.

        Raises:
            ConfigError: descriptor inválido, nombre duplicado o transporte
                imposible de construir.
        """
        descriptor = parse_descriptor(config)
        if descriptor.name in self.registry:
            raise ConfigError(f"Channel '{descriptor.name}' already registered")

        try:
            transport = self._transport_factory(descriptor.to_channel())
        except StreamIngestError:
            raise
        except Exception as e:
            raise ConfigError(f"Cannot build transport for channel '{descriptor.name}': {e}") from e

        channel = self.registry.register_channel(descriptor)
        transport.on_message(self.dispatcher.handle_transport_message)
        transport.on_error(self._handle_transport_error)
        self._transports[channel.name] = transport

        if channel.name in self.settings.safety_channels:
            self.processor.register_emergency_callback(
                channel.name,
                SafetyProtocol(self._sink, self.events.emit, table=self.settings.emergency_table),
            )
        return channel

    def _connect(self, transport: TransportAdapter) -> bool:
        try:
            transport.connect()
            return True
        except ConnectError as e:
            self.stats.record_error("transport")
            logger.error("[STREAM] Failed to connect %s: %s", transport.channel.name, e.reason)
            self.events.emit(StreamEvent.build(
                STREAM_ERROR, transport.channel.name, {}, error=e.reason, kind="connect",
            ))
            return False

    def _handle_transport_error(self, channel: Channel, error: BaseException) -> None:
        self.stats.record_error("transport")
        logger.error("[STREAM] Stream error on %s: %s", channel.name, describe(error))
        self.events.emit(StreamEvent.build(
            STREAM_ERROR, channel.name, {}, error=str(error), kind="transport",
        ))

    def shutdown(self) -> None:
        """Parada ordenada: supervisor → flush de colas → cierre de conexiones → estado final."""
        with self._lifecycle_lock:
            if self._shut_down:
                return
            logger.info("[STREAM] Shutting down stream connector...")

            self.supervisor.stop()

            flushed = self.processor.flush_all()
            logger.info("[STREAM] Flushed %d queued messages", flushed)

            for transport in list(self._transports.values()):
                transport.close()

            # Mensajes medium llegados entre el flush y el cierre
            late = self.processor.pending_total()
            if late:
                written = self.processor.flush_all()
                logger.info("[STREAM] Late flush: %d queued during close, %d written", late, written)
                if written < late:
                    logger.warning("[STREAM] %d queued messages lost at shutdown", late - written)

            self._persist_state()

            self._shut_down = True
            self._initialized = False
            logger.info("[STREAM] Shutdown complete. %s", self.get_statistics().to_dict())

    def __enter__(self) -> "StreamConnector":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Estado de ejecución
    # ------------------------------------------------------------------

    def _load_state(self) -> None:
        try:
            self.previous_state = self._state_store.load()
        except Exception as e:
            logger.warning("[STREAM] No previous stream state loaded: %s", e)
            self.previous_state = None
        if self.previous_state:
            logger.info("[STREAM] Previous run state found (saved %s)", self.previous_state.get("timestamp"))

    def _persist_state(self) -> None:
        state = {
            "stats": self.get_statistics().to_dict(),
            "buffers": {name: m.to_dict() for name, m in self.processor.latest_all().items()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._state_store.save(state)
        except Exception:
            logger.exception("[STREAM] Failed to persist final state")

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    def on(self, event_name: str, handler: EventHandler) -> None:
        self.events.on(event_name, handler)

    def register_emergency_callback(self, channel_name: str, callback: EmergencyCallback) -> None:
        self.registry.get_channel(channel_name)
        self.processor.register_emergency_callback(channel_name, callback)

    def dispatch(self, raw_payload: Any, channel_name: str) -> Optional[Message]:
        """Despacha un payload como si hubiera llegado por el canal."""
        return self.dispatcher.dispatch(raw_payload, self.registry.get_channel(channel_name))

    def transport(self, channel_name: str) -> TransportAdapter:
        self.registry.get_channel(channel_name)
        return self._transports[channel_name]

    def latest(self, channel_name: str) -> Optional[Message]:
        return self.processor.latest(channel_name)

    def recent(self, channel_name: str) -> List[Message]:
        return self.dispatcher.recent_messages(channel_name)

    def pending(self, channel_name: str) -> int:
        return self.processor.pending(channel_name)

    def get_statistics(self) -> StatisticsSnapshot:
        return self.stats.snapshot(t.connection for t in list(self._transports.values()))

    @property
    def is_initialized(self) -> bool:
        return self._initialized
