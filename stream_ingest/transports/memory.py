"""Transporte en memoria para tests y ejecuciones locales.

- Entrega síncrona: ``push()`` invoca el callback en el hilo del llamador.
- Fallos de conexión programables con ``fail_connects``.
- Sin hilos ni sockets.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.domain.channel import Channel
from ..core.errors import ConnectError
from .base import TransportAdapter

logger = logging.getLogger(__name__)


class InMemoryTransport(TransportAdapter):
    """Fake de transporte con el mismo contrato que los reales."""

    def __init__(
        self,
        channel: Channel,
        fail_connects: int = 0,
        always_fail: bool = False,
    ) -> None:
        super().__init__(channel)
        self._fail_connects = fail_connects
        self._always_fail = always_fail
        self.open_calls = 0
        self.shutdown_calls = 0
        self.failed_connects = 0

    def fail_next_connects(self, count: int) -> None:
        self._fail_connects = count

    def set_always_fail(self, value: bool) -> None:
        self._always_fail = value

    def _open(self) -> None:
        self.open_calls += 1
        if self._always_fail or self._fail_connects > 0:
            if self._fail_connects > 0:
                self._fail_connects -= 1
            self.failed_connects += 1
            raise ConnectError(self.channel.name, "simulated connect failure")

    def _shutdown(self) -> None:
        self.shutdown_calls += 1

    def push(self, raw_payload: Any) -> None:
        """Simula la llegada de un payload crudo."""
        self._deliver(raw_payload)

    def fail(self, error: Optional[BaseException] = None) -> None:
        """Simula un error de runtime (p.ej. socket caído)."""
        self._report_error(error or ConnectError(self.channel.name, "simulated transport error"), degrade=True)

    @property
    def transport_name(self) -> str:
        return "memory"
