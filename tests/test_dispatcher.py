"""Tests del dispatcher: normalización, orden total y descartes.

Ejecutar:
    pytest tests/test_dispatcher.py -v
"""

import json
import threading
from unittest.mock import MagicMock

import pytest

from stream_ingest.core.domain.channel import Priority
from stream_ingest.core.domain.events import STREAM_DATA, STREAM_ERROR
from stream_ingest.core.errors import DispatchError, PersistenceError
from stream_ingest.pipeline.dispatcher import MessageDispatcher, normalize_payload


# =============================================================================
# NORMALIZACIÓN
# =============================================================================

class TestNormalizePayload:

    def test_dict_passthrough(self):
        assert normalize_payload({"a": 1}) == {"a": 1}

    def test_json_string(self):
        assert normalize_payload('{"type": "reading", "value": 3}') == {"type": "reading", "value": 3}

    def test_utf8_bytes(self):
        assert normalize_payload('{"zona": "andén"}'.encode("utf-8")) == {"zona": "andén"}

    @pytest.mark.parametrize("raw", [None, "", "   ", b"", "not json", "[1, 2]", "42", b"\xff\xfe"])
    def test_malformed_raises(self, raw):
        with pytest.raises(DispatchError):
            normalize_payload(raw)


# =============================================================================
# ENRIQUECIMIENTO Y ORDEN
# =============================================================================

class TestDispatchOrdering:

    def test_sequences_strictly_increasing(self, dispatcher, make_channel):
        channel = make_channel("LOGS", Priority.LOW)

        messages = [dispatcher.dispatch({"i": i}, channel) for i in range(5)]

        assert [m.sequence for m in messages] == [1, 2, 3, 4, 5]

    def test_message_inherits_channel_priority(self, dispatcher, make_channel):
        channel = make_channel("PROGRESS", Priority.MEDIUM)
        message = dispatcher.dispatch({"x": 1}, channel)

        assert message.priority == Priority.MEDIUM
        assert message.source_channel == "PROGRESS"
        assert message.payload["x"] == 1

    def test_payload_is_read_only(self, dispatcher, make_channel):
        message = dispatcher.dispatch({"x": 1}, make_channel("LOGS", Priority.LOW))

        with pytest.raises(TypeError):
            message.payload["x"] = 2

    def test_total_order_across_threads(self, dispatcher, make_channel):
        """Sin secuencias duplicadas ni huecos con dispatch concurrente."""
        channels = [make_channel(f"CH{i}", Priority.LOW) for i in range(4)]
        per_thread = 250
        results = []
        results_lock = threading.Lock()

        def worker(channel):
            local = [dispatcher.dispatch({"n": n}, channel) for n in range(per_thread)]
            with results_lock:
                results.extend(local)

        threads = [threading.Thread(target=worker, args=(ch,)) for ch in channels]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        sequences = sorted(m.sequence for m in results)
        assert sequences == list(range(1, len(channels) * per_thread + 1))

    def test_per_channel_order_preserved(self, dispatcher, make_channel):
        """Dentro de un canal la secuencia sigue el orden de llegada."""
        channel = make_channel("CH", Priority.LOW)
        for n in range(20):
            dispatcher.dispatch({"n": n}, channel)

        recent = dispatcher.recent_messages("CH")
        assert [m.payload["n"] for m in recent] == list(range(20))
        assert [m.sequence for m in recent] == sorted(m.sequence for m in recent)

    def test_stream_data_emitted_for_each_message(self, dispatcher, make_channel, recorder):
        dispatcher.dispatch({"x": 1}, make_channel("LOGS", Priority.LOW))

        data = recorder.named(STREAM_DATA)
        assert len(data) == 1
        assert data[0].channel_name == "LOGS"
        assert data[0].details["sequence"] == 1

    def test_recent_buffer_bounded_by_capacity(self, dispatcher, make_channel):
        channel = make_channel("LOGS", Priority.LOW, buffer_capacity=3)
        for n in range(10):
            dispatcher.dispatch({"n": n}, channel)

        assert [m.payload["n"] for m in dispatcher.recent_messages("LOGS")] == [7, 8, 9]


# =============================================================================
# DESCARTES
# =============================================================================

class TestDropAccounting:

    def test_malformed_payload_dropped(self, dispatcher, make_channel, stats, sink, recorder):
        result = dispatcher.dispatch("not json", make_channel("SENSOR_DATA", Priority.CRITICAL))

        assert result is None
        assert stats.dropped_messages == 1
        assert stats.total_messages == 0
        assert sink.writes == []
        assert recorder.named(STREAM_DATA) == []

    def test_drop_does_not_consume_sequence(self, dispatcher, make_channel):
        channel = make_channel("LOGS", Priority.LOW)
        dispatcher.dispatch("garbage", channel)
        message = dispatcher.dispatch({"ok": True}, channel)

        assert message.sequence == 1

    def test_drop_goes_to_dead_letter_queue(self, processor, event_bus, stats, make_channel):
        dlq = MagicMock()
        dispatcher = MessageDispatcher(processor, event_bus, stats, dead_letters=dlq)

        dispatcher.dispatch(b"\x00\x01", make_channel("LOGS", Priority.LOW))

        dlq.send.assert_called_once()
        args = dlq.send.call_args[0]
        assert args[0] == b"\x00\x01"
        assert args[2] == "LOGS"


# =============================================================================
# ENTRADA DESDE TRANSPORTES
# =============================================================================

class TestHandleTransportMessage:

    def test_critical_failure_propagates_from_dispatch(self, dispatcher, make_channel, sink):
        sink.fail = True

        with pytest.raises(PersistenceError):
            dispatcher.dispatch({"value": 99}, make_channel("SENSOR_DATA", Priority.CRITICAL))

    def test_transport_entry_never_raises(self, dispatcher, make_channel, sink, recorder):
        sink.fail = True

        dispatcher.handle_transport_message(json.dumps({"value": 99}), make_channel("SENSOR_DATA", Priority.CRITICAL))

        errors = recorder.named(STREAM_ERROR)
        assert len(errors) == 1
        assert errors[0].details["kind"] == "critical_persistence"

    def test_unexpected_error_is_reported(self, event_bus, stats, make_channel, recorder):
        processor = MagicMock()
        processor.process.side_effect = RuntimeError("boom")
        dispatcher = MessageDispatcher(processor, event_bus, stats)

        dispatcher.handle_transport_message({"x": 1}, make_channel("LOGS", Priority.LOW))

        assert recorder.named(STREAM_ERROR)[0].details["kind"] == "dispatch"
        assert stats.snapshot().errors_by_kind["dispatch"] == 1
