from __future__ import annotations

import threading
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple

from ..core.errors import PersistenceError


class PersistenceSink(Protocol):
    """Interfaz del almacén persistente al que escribe el pipeline.

    La entrega es at-least-once: las implementaciones deben tolerar inserts
    duplicados (idempotentes o ignore-on-conflict).
    """

    def store(self, table: str, fields: Mapping[str, Any]) -> None:
        """Inserta una fila. Lanza PersistenceError si falla."""
        ...

    def store_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Inserta un lote en una sola escritura. Lanza PersistenceError si falla."""
        ...


class InMemorySink:
    """Sink en memoria; registra cada llamada como una escritura."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.rows: Dict[str, List[Dict[str, Any]]] = {}
        self.writes: List[Tuple[str, int]] = []
        self._lock = threading.Lock()

    def store(self, table: str, fields: Mapping[str, Any]) -> None:
        if self.fail:
            raise PersistenceError(table, "sink unavailable")
        with self._lock:
            self.rows.setdefault(table, []).append(dict(fields))
            self.writes.append((table, 1))

    def store_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        if self.fail:
            raise PersistenceError(table, "sink unavailable", rows=len(rows))
        with self._lock:
            self.rows.setdefault(table, []).extend(dict(r) for r in rows)
            self.writes.append((table, len(rows)))

    def count(self, table: str) -> int:
        with self._lock:
            return len(self.rows.get(table, []))
