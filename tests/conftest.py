"""Fixtures compartidas de los tests del pipeline de streams."""

from typing import Any, Dict, List

import pytest

from common.config import Settings
from stream_ingest.connector import StreamConnector
from stream_ingest.core.domain.channel import Channel, Priority, TransportKind
from stream_ingest.core.domain.events import StreamEvent
from stream_ingest.events import ANY_EVENT, EventBus
from stream_ingest.monitoring.stats import StreamStatistics
from stream_ingest.persistence.sink import InMemorySink
from stream_ingest.persistence.state_store import InMemoryStateStore
from stream_ingest.pipeline.dispatcher import MessageDispatcher
from stream_ingest.pipeline.processor import PriorityProcessor
from stream_ingest.transports.memory import InMemoryTransport


class EventRecorder:
    """Handler que guarda todos los eventos emitidos."""

    def __init__(self):
        self.events: List[StreamEvent] = []

    def __call__(self, event: StreamEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> List[StreamEvent]:
        return [e for e in self.events if e.name == name]

    def names(self) -> List[str]:
        return [e.name for e in self.events]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def make_channel():
    """Fábrica de canales con defaults razonables."""
    def _make(
        name: str = "SENSOR_DATA",
        priority: Priority = Priority.CRITICAL,
        kind: TransportKind = TransportKind.TOPIC_BUS,
        buffer_capacity: int = 1000,
        **kwargs: Any,
    ) -> Channel:
        return Channel(
            name=name,
            transport_kind=kind,
            priority=priority,
            buffer_capacity=buffer_capacity,
            **kwargs,
        )
    return _make


@pytest.fixture
def sink() -> InMemorySink:
    return InMemorySink()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus) -> EventRecorder:
    rec = EventRecorder()
    event_bus.on(ANY_EVENT, rec)
    return rec


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stats(clock) -> StreamStatistics:
    s = StreamStatistics(clock=clock)
    s.start()
    return s


@pytest.fixture
def processor(sink, event_bus, stats) -> PriorityProcessor:
    return PriorityProcessor(sink, event_bus, stats, flush_threshold=100)


@pytest.fixture
def dispatcher(processor, event_bus, stats, clock) -> MessageDispatcher:
    return MessageDispatcher(processor, event_bus, stats, clock=clock)


@pytest.fixture
def settings() -> Settings:
    """Settings de test: sin BD ni Redis, reconexión inmediata."""
    return Settings(
        max_reconnect_attempts=10,
        reconnect_delay_seconds=0.0,
        health_check_interval_seconds=3600.0,
        batch_flush_threshold=100,
    )


@pytest.fixture
def transports() -> Dict[str, InMemoryTransport]:
    """Transportes creados por el conector, por nombre de canal."""
    return {}


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def make_connector(sink, state_store, transports):
    """Construye un StreamConnector con transportes en memoria."""
    created = []

    def _factory(channel: Channel) -> InMemoryTransport:
        transport = InMemoryTransport(channel)
        transports[channel.name] = transport
        return transport

    def _make(settings: Settings, **kwargs: Any) -> StreamConnector:
        connector = StreamConnector(
            sink,
            settings=settings,
            state_store=state_store,
            transport_factory=_factory,
            **kwargs,
        )
        created.append(connector)
        return connector

    yield _make

    for connector in created:
        connector.supervisor.stop()
