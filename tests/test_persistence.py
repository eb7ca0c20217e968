"""Tests de persistencia: sink SQL, circuit breaker, DLQ y state store.

Ejecutar:
    pytest tests/test_persistence.py -v
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import redis
from sqlalchemy import BigInteger, MetaData, create_engine, text
from sqlalchemy.pool import StaticPool

from stream_ingest.core.errors import PersistenceError
from stream_ingest.persistence.sql_sink import SqlAlchemySink, build_tables
from stream_ingest.persistence.state_store import InMemoryStateStore, RedisStateStore
from stream_ingest.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitState,
)
from stream_ingest.resilience.dead_letter import DeadLetterQueue

TABLE = "construction_stream_data"


def make_row(seq, stream="SENSOR_DATA"):
    return {
        "stream_name": stream,
        "sequence": seq,
        "priority": "critical",
        "message_data": json.dumps({"value": seq}),
        "received_at": datetime(2024, 3, 1, 12, 0, seq % 60, tzinfo=timezone.utc),
    }


def count_rows(engine, table=TABLE):
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


@pytest.fixture
def sql_sink(engine):
    s = SqlAlchemySink(engine)
    s.ensure_schema()
    return s


# =============================================================================
# SINK SQL
# =============================================================================

class TestSqlAlchemySink:

    def test_store_single_row(self, sql_sink, engine):
        sql_sink.store(TABLE, make_row(1))

        assert count_rows(engine) == 1
        assert sql_sink.stats["rows_written"] == 1

    def test_store_many_single_write(self, sql_sink, engine):
        sql_sink.store_many(TABLE, [make_row(i) for i in range(1, 51)])

        assert count_rows(engine) == 50

    def test_duplicate_insert_ignored(self, sql_sink, engine):
        """At-least-once: reintentar la misma fila no duplica ni falla."""
        sql_sink.store(TABLE, make_row(1))
        sql_sink.store(TABLE, make_row(1))

        assert count_rows(engine) == 1
        assert sql_sink.stats["duplicates_ignored"] == 1

    def test_batch_with_duplicates(self, sql_sink, engine):
        sql_sink.store_many(TABLE, [make_row(1), make_row(2)])
        sql_sink.store_many(TABLE, [make_row(2), make_row(3)])

        assert count_rows(engine) == 3
        assert sql_sink.stats["duplicates_ignored"] == 1

    def test_sequence_columns_are_64_bit(self):
        tables = build_tables(MetaData(), TABLE, "construction_emergency_events")

        for table in tables.values():
            assert isinstance(table.c.sequence.type, BigInteger)

    def test_sequence_beyond_32_bits(self, sql_sink, engine):
        row = make_row(1)
        row["sequence"] = 2**40
        sql_sink.store(TABLE, row)

        with engine.connect() as conn:
            assert conn.execute(text(f"SELECT sequence FROM {TABLE}")).scalar_one() == 2**40

    def test_empty_batch_is_noop(self, sql_sink, engine):
        sql_sink.store_many(TABLE, [])
        assert count_rows(engine) == 0

    def test_unknown_table(self, sql_sink):
        with pytest.raises(PersistenceError):
            sql_sink.store("not_a_table", make_row(1))

    def test_database_error_becomes_persistence_error(self, sql_sink, engine):
        with engine.begin() as conn:
            conn.execute(text(f"DROP TABLE {TABLE}"))

        with pytest.raises(PersistenceError) as exc_info:
            sql_sink.store(TABLE, make_row(1))
        assert exc_info.value.table == TABLE
        assert sql_sink.stats["failures"] == 1

    def test_emergency_table(self, sql_sink, engine):
        sql_sink.store("construction_emergency_events", {
            "stream_name": "SAFETY_ALERTS",
            "sequence": 4,
            "event_type": "emergency",
            "location": "Torre A",
            "severity": "high",
            "details": "{}",
            "occurred_at": datetime.now(timezone.utc),
        })
        assert count_rows(engine, "construction_emergency_events") == 1

    def test_open_breaker_rejects_writes(self, engine):
        breaker = CircuitBreaker("sink", CircuitBreakerConfig(failure_threshold=1, recovery_timeout_seconds=60))
        sink = SqlAlchemySink(engine, breaker=breaker)
        sink.ensure_schema()

        with pytest.raises(RuntimeError):
            breaker.call(_raise_runtime)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(PersistenceError):
            sink.store(TABLE, make_row(1))
        assert count_rows(engine) == 0


def _raise_runtime():
    raise RuntimeError("db down")


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class TestCircuitBreaker:

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            "test",
            CircuitBreakerConfig(failure_threshold=3, recovery_timeout_seconds=10, success_threshold=2),
            clock=clock,
        )

    def test_opens_after_threshold(self, breaker):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.call(_raise_runtime)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpen):
            breaker.call(lambda: "never")

    def test_success_resets_failures(self, breaker):
        for _ in range(2):
            with pytest.raises(RuntimeError):
                breaker.call(_raise_runtime)
        breaker.call(lambda: None)

        assert breaker.get_stats()["failure_count"] == 0
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_then_recovers(self, breaker, clock):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.call(_raise_runtime)

        clock.advance(10)
        assert breaker.state == CircuitState.HALF_OPEN

        assert breaker.call(lambda: 1) == 1
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.call(lambda: 2)
        assert breaker.state == CircuitState.CLOSED

    def test_failure_in_half_open_reopens(self, breaker, clock):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.call(_raise_runtime)
        clock.advance(10)

        with pytest.raises(RuntimeError):
            breaker.call(_raise_runtime)
        assert breaker.state == CircuitState.OPEN

    def test_reset(self, breaker):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.call(_raise_runtime)

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


# =============================================================================
# DEAD LETTER QUEUE
# =============================================================================

class TestDeadLetterQueue:

    def test_disabled_without_redis(self):
        dlq = DeadLetterQueue(None)

        assert dlq.enabled is False
        assert dlq.send(b"garbage", "Invalid JSON", "SENSOR_DATA") is False

    def test_send_to_stream(self):
        client = MagicMock()
        dlq = DeadLetterQueue(client, stream_name="dlq:test")

        assert dlq.send(b"{broken", "Invalid JSON", "SENSOR_DATA") is True

        stream, entry = client.xadd.call_args[0]
        assert stream == "dlq:test"
        assert entry["payload"] == "{broken"
        assert entry["channel"] == "SENSOR_DATA"
        assert dlq.stats["total_sent"] == 1

    def test_redis_error_counted(self):
        client = MagicMock()
        client.xadd.side_effect = redis.ConnectionError("refused")
        dlq = DeadLetterQueue(client)

        assert dlq.send("x", "err", "SENSOR_DATA") is False
        assert dlq.stats["send_errors"] == 1

    def test_from_url_without_url(self):
        assert DeadLetterQueue.from_url(None).enabled is False


# =============================================================================
# STATE STORE
# =============================================================================

class TestStateStore:

    def test_in_memory_round_trip(self):
        store = InMemoryStateStore()
        store.save({"stats": {"total_messages": 3}, "when": datetime(2024, 1, 1)})

        loaded = store.load()
        assert loaded["stats"]["total_messages"] == 3
        assert isinstance(loaded["when"], str)

    def test_redis_save_and_load(self):
        client = MagicMock()
        store = RedisStateStore(client, key="k")

        store.save({"a": 1})
        key, raw = client.set.call_args[0]
        assert key == "k"

        client.get.return_value = raw
        assert store.load() == {"a": 1}

    def test_redis_missing_key(self):
        client = MagicMock()
        client.get.return_value = None

        assert RedisStateStore(client).load() is None

    def test_redis_unreadable_state(self):
        client = MagicMock()
        client.get.return_value = b"{not json"

        assert RedisStateStore(client).load() is None
