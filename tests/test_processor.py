"""Tests de los carriles de prioridad.

Ejecutar:
    pytest tests/test_processor.py -v
"""

from datetime import datetime, timezone

import pytest

from stream_ingest.core.domain.channel import Priority
from stream_ingest.core.domain.events import (
    CRITICAL_ALERT,
    EMERGENCY_RESPONSE,
    SENSOR_ALERT,
    STREAM_UPDATE,
)
from stream_ingest.core.domain.message import Message, ProcessingOutcome
from stream_ingest.core.errors import PersistenceError
from stream_ingest.pipeline.domain_events import DomainEventRules, SafetyProtocol
from stream_ingest.pipeline.processor import PriorityProcessor

TABLE = "construction_stream_data"


def make_message(seq, channel="CH", priority=Priority.MEDIUM, **payload):
    return Message.create(
        sequence=seq,
        source_channel=channel,
        priority=priority,
        received_at=float(seq),
        received_wall=datetime(2024, 1, 1, tzinfo=timezone.utc),
        payload=payload,
    )


# =============================================================================
# ROUTING
# =============================================================================

class TestPriorityRouting:

    @pytest.mark.parametrize("priority,expected", [
        (Priority.CRITICAL, ProcessingOutcome.PERSISTED),
        (Priority.HIGH, ProcessingOutcome.PERSISTED),
        (Priority.MEDIUM, ProcessingOutcome.QUEUED),
        (Priority.LOW, ProcessingOutcome.BUFFERED),
    ])
    def test_lane_outcome(self, processor, priority, expected):
        assert processor.process(make_message(1, priority=priority)) == expected

    def test_routing_is_deterministic(self, processor):
        """Mismo mensaje, mismo carril."""
        outcomes = {processor.process(make_message(i, channel="LOGS", priority=Priority.LOW)) for i in range(10)}
        assert outcomes == {ProcessingOutcome.BUFFERED}


# =============================================================================
# CARRIL CRITICAL
# =============================================================================

class TestCriticalLane:

    def test_persists_and_alerts(self, processor, sink, recorder):
        processor.process(make_message(1, "SENSOR_DATA", Priority.CRITICAL, value=3))

        assert sink.count(TABLE) == 1
        assert sink.rows[TABLE][0]["stream_name"] == "SENSOR_DATA"
        assert recorder.names() == [CRITICAL_ALERT]

    def test_persistence_failure_propagates(self, processor, sink, stats, recorder):
        sink.fail = True

        with pytest.raises(PersistenceError):
            processor.process(make_message(1, "SENSOR_DATA", Priority.CRITICAL))

        assert stats.snapshot().errors_by_kind["critical_persistence"] == 1
        assert recorder.named(CRITICAL_ALERT) == []

    def test_sensor_alert(self, processor, recorder):
        processor.process(make_message(
            1, "SENSOR_DATA", Priority.CRITICAL, alert=True, sensorId="S-12", value=88.5, threshold=80,
        ))

        alerts = recorder.named(SENSOR_ALERT)
        assert len(alerts) == 1
        assert alerts[0].details["sensor"] == "S-12"
        assert alerts[0].details["value"] == 88.5
        assert alerts[0].details["threshold"] == 80

    def test_no_sensor_alert_without_flag(self, processor, recorder):
        processor.process(make_message(1, "SENSOR_DATA", Priority.CRITICAL, value=1))
        assert recorder.named(SENSOR_ALERT) == []

    def test_emergency_callbacks_run_in_order(self, processor):
        calls = []
        processor.register_emergency_callback("SAFETY", lambda m: calls.append(("a", m.sequence)))
        processor.register_emergency_callback("SAFETY", lambda m: calls.append(("b", m.sequence)))

        processor.process(make_message(7, "SAFETY", Priority.CRITICAL))

        assert calls == [("a", 7), ("b", 7)]

    def test_failing_callback_does_not_break_lane(self, processor, stats, recorder):
        def broken(_message):
            raise RuntimeError("callback down")

        processor.register_emergency_callback("SAFETY", broken)

        outcome = processor.process(make_message(1, "SAFETY", Priority.CRITICAL))

        assert outcome == ProcessingOutcome.PERSISTED
        assert stats.snapshot().errors_by_kind["callback"] == 1
        assert recorder.named(CRITICAL_ALERT)


# =============================================================================
# CARRIL HIGH
# =============================================================================

class TestHighLane:

    def test_failure_is_absorbed(self, processor, sink, stats, recorder):
        sink.fail = True

        outcome = processor.process(make_message(1, "PROJECT", Priority.HIGH, type="milestone"))

        assert outcome == ProcessingOutcome.PERSIST_FAILED
        assert stats.snapshot().errors_by_kind["persistence"] == 1
        assert recorder.names() == ["milestoneUpdate"]

    @pytest.mark.parametrize("message_type,event", [
        ("milestone", "milestoneUpdate"),
        ("schedule_change", "scheduleChange"),
        ("inspection", "inspectionComplete"),
        ("nonconformance", "nonconformanceDetected"),
        ("something_else", STREAM_UPDATE),
    ])
    def test_domain_events(self, processor, recorder, message_type, event):
        processor.process(make_message(1, "PROJECT", Priority.HIGH, type=message_type))
        assert recorder.names() == [event]

    def test_custom_rules(self, sink, event_bus, stats, recorder):
        rules = DomainEventRules()
        rules.add("delivery", "deliveryReceived")
        processor = PriorityProcessor(sink, event_bus, stats, event_rules=rules)

        processor.process(make_message(1, "PROJECT", Priority.HIGH, type="delivery"))

        assert recorder.names() == ["deliveryReceived"]


# =============================================================================
# CARRIL MEDIUM
# =============================================================================

class TestMediumLane:

    def test_flush_at_threshold(self, processor, sink):
        """100 mensajes → una escritura de 100, cola vacía."""
        outcomes = [processor.process(make_message(i, "PROGRESS")) for i in range(1, 101)]

        assert outcomes[:-1] == [ProcessingOutcome.QUEUED] * 99
        assert outcomes[-1] == ProcessingOutcome.FLUSHED
        assert sink.writes == [(TABLE, 100)]
        assert processor.pending("PROGRESS") == 0

    def test_partial_batch_stays_queued(self, processor, sink):
        """150 mensajes → un flush de 100, 50 pendientes."""
        for i in range(1, 151):
            processor.process(make_message(i, "PROGRESS"))

        assert sink.writes == [(TABLE, 100)]
        assert processor.pending("PROGRESS") == 50

    def test_batch_keeps_arrival_order(self, processor, sink):
        for i in range(1, 101):
            processor.process(make_message(i, "PROGRESS"))

        assert [r["sequence"] for r in sink.rows[TABLE]] == list(range(1, 101))

    def test_queues_are_per_channel(self, sink, event_bus, stats):
        processor = PriorityProcessor(sink, event_bus, stats, flush_threshold=2)

        processor.process(make_message(1, "A"))
        processor.process(make_message(2, "B"))
        assert sink.writes == []

        processor.process(make_message(3, "A"))
        assert sink.writes == [(TABLE, 2)]
        assert processor.pending("B") == 1

    def test_failed_flush_loses_batch(self, processor, sink, stats):
        sink.fail = True
        for i in range(1, 100):
            processor.process(make_message(i, "PROGRESS"))

        outcome = processor.process(make_message(100, "PROGRESS"))

        assert outcome == ProcessingOutcome.PERSIST_FAILED
        assert processor.pending("PROGRESS") == 0
        assert stats.snapshot().errors_by_kind["persistence"] == 1

    def test_flush_all(self, processor, sink):
        for i in range(1, 6):
            processor.process(make_message(i, "A"))
        for i in range(6, 9):
            processor.process(make_message(i, "B"))

        assert processor.flush_all() == 8
        assert sorted(sink.writes) == [(TABLE, 3), (TABLE, 5)]
        assert processor.pending("A") == 0

    def test_flush_empty_queue(self, processor, sink):
        assert processor.flush("NOPE") == 0
        assert sink.writes == []


# =============================================================================
# CARRIL LOW
# =============================================================================

class TestLowLane:

    def test_only_latest_kept(self, processor, sink):
        for i in range(1, 4):
            processor.process(make_message(i, "LOGS", Priority.LOW, n=i))

        assert processor.latest("LOGS").payload["n"] == 3
        assert sink.writes == []

    def test_latest_unknown_channel(self, processor):
        assert processor.latest("NOPE") is None


# =============================================================================
# PROTOCOLO DE SEGURIDAD
# =============================================================================

class TestSafetyProtocol:

    def test_emergency_triggers_response(self, sink, event_bus, recorder):
        protocol = SafetyProtocol(sink, event_bus.emit)

        protocol(make_message(5, "SAFETY_ALERTS", Priority.CRITICAL, type="emergency", location="Torre B", severity="high"))

        responses = recorder.named(EMERGENCY_RESPONSE)
        assert len(responses) == 1
        assert responses[0].details["location"] == "Torre B"
        assert protocol.triggered == 1
        row = sink.rows["construction_emergency_events"][0]
        assert row["sequence"] == 5
        assert row["severity"] == "high"

    def test_non_emergency_ignored(self, sink, event_bus, recorder):
        protocol = SafetyProtocol(sink, event_bus.emit)

        protocol(make_message(1, "SAFETY_ALERTS", Priority.CRITICAL, type="hazard"))

        assert recorder.events == []
        assert protocol.triggered == 0

    def test_store_failure_still_emits(self, sink, event_bus, recorder):
        sink.fail = True
        protocol = SafetyProtocol(sink, event_bus.emit)

        protocol(make_message(1, "SAFETY_ALERTS", Priority.CRITICAL, type="emergency"))

        assert len(recorder.named(EMERGENCY_RESPONSE)) == 1
