"""Sink relacional sobre SQLAlchemy Core.

Tablas:
- construction_stream_data: un registro por mensaje persistido
- construction_emergency_events: eventos del protocolo de seguridad

Idempotencia: (stream_name, sequence, received_at) es único; un insert
duplicado se ignora en lugar de fallar.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from common.config import Settings

from ..core.errors import PersistenceError
from ..resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerOpen

logger = logging.getLogger(__name__)


def build_tables(metadata: MetaData, stream_table: str, emergency_table: str) -> Dict[str, Table]:
    stream = Table(
        stream_table,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("stream_name", String(128), nullable=False),
        Column("sequence", BigInteger, nullable=False),
        Column("priority", String(16), nullable=False),
        Column("message_data", Text, nullable=False),
        Column("received_at", DateTime(timezone=True), nullable=False),
        UniqueConstraint("stream_name", "sequence", "received_at", name=f"uq_{stream_table}_msg"),
    )
    emergency = Table(
        emergency_table,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("stream_name", String(128), nullable=False),
        Column("sequence", BigInteger, nullable=False),
        Column("event_type", String(64), nullable=False),
        Column("location", String(256)),
        Column("severity", String(32)),
        Column("details", Text),
        Column("occurred_at", DateTime(timezone=True), nullable=False),
        UniqueConstraint("stream_name", "sequence", name=f"uq_{emergency_table}_evt"),
    )
    return {stream.name: stream, emergency.name: emergency}


class SqlAlchemySink:
    """Sink que escribe en la BD relacional a través de un circuit breaker."""

    def __init__(
        self,
        engine: Engine,
        stream_table: str = "construction_stream_data",
        emergency_table: str = "construction_emergency_events",
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._engine = engine
        self._metadata = MetaData()
        self._tables = build_tables(self._metadata, stream_table, emergency_table)
        self._breaker = breaker or CircuitBreaker("sink")

        self._rows_written = 0
        self._duplicates_ignored = 0
        self._failures = 0

    @classmethod
    def from_settings(cls, engine: Engine, settings: Settings) -> "SqlAlchemySink":
        return cls(
            engine,
            stream_table=settings.stream_table,
            emergency_table=settings.emergency_table,
            breaker=CircuitBreaker("sink", CircuitBreakerConfig.from_settings(settings)),
        )

    def ensure_schema(self) -> None:
        """Crea las tablas si no existen."""
        self._metadata.create_all(self._engine)
        logger.info("[SINK] Schema ready tables=%s", ",".join(self._tables))

    def store(self, table: str, fields: Mapping[str, Any]) -> None:
        self._write(table, [dict(fields)])

    def store_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        if not rows:
            return
        self._write(table, [dict(r) for r in rows])

    def _write(self, table_name: str, rows: List[Dict[str, Any]]) -> None:
        table = self._tables.get(table_name)
        if table is None:
            raise PersistenceError(table_name, "unknown table", rows=len(rows))

        try:
            self._breaker.call(lambda: self._insert(table, rows))
        except CircuitBreakerOpen as e:
            self._failures += 1
            raise PersistenceError(table_name, str(e), rows=len(rows)) from e
        except SQLAlchemyError as e:
            self._failures += 1
            logger.error("[SINK] Write failed table=%s rows=%d: %s", table_name, len(rows), e)
            raise PersistenceError(table_name, str(e)[:200], rows=len(rows)) from e

    def _insert(self, table: Table, rows: List[Dict[str, Any]]) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(table.insert(), rows)
            self._rows_written += len(rows)
            return
        except IntegrityError:
            if len(rows) == 1:
                self._duplicates_ignored += 1
                logger.debug("[SINK] Duplicate ignored table=%s", table.name)
                return

        # Lote con algún duplicado: fila a fila ignorando los conflictos
        for row in rows:
            try:
                with self._engine.begin() as conn:
                    conn.execute(table.insert(), [row])
                self._rows_written += 1
            except IntegrityError:
                self._duplicates_ignored += 1
        logger.debug("[SINK] Batch with duplicates table=%s rows=%d", table.name, len(rows))

    @property
    def stats(self) -> dict:
        return {
            "rows_written": self._rows_written,
            "duplicates_ignored": self._duplicates_ignored,
            "failures": self._failures,
            "circuit_breaker": self._breaker.get_stats(),
        }
