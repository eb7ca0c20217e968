"""Contador global de secuencia."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class SequenceCounter:
    """Contador estrictamente creciente, único por proceso.

    ``reserve()`` abre la sección crítica donde el dispatcher asigna la
    secuencia y el timestamp de recepción, de modo que ambos quedan en el
    mismo orden total.
    """

    def __init__(self, start: int = 1):
        self._next = start
        self._lock = threading.Lock()

    @contextmanager
    def reserve(self) -> Iterator[int]:
        with self._lock:
            value = self._next
            self._next += 1
            yield value

    def next(self) -> int:
        with self.reserve() as value:
            return value

    @property
    def last_assigned(self) -> int:
        with self._lock:
            return self._next - 1
