"""TransportAdapter - Interface base para todos los transportes de entrada.

Define el contrato común de socket (WebSocket), topic bus (MQTT), polling
(HTTP) y el transporte en memoria de los tests. El pipeline no sabe qué
implementación tiene detrás.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from ..core.domain.channel import Channel
from ..core.domain.connection import Connection, ConnectionStatus
from ..core.errors import ConnectError

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Any, Channel], None]
ErrorCallback = Callable[[Channel, BaseException], None]


class TransportAdapter(ABC):
    """Interface común para todos los transportes.

    Errores de runtime del transporte se notifican por el callback de error,
    nunca se lanzan a través del adaptador. Solo ``connect()`` falla de forma
    síncrona, con ConnectError.
    """

    def __init__(self, channel: Channel):
        self._channel = channel
        self._connection = Connection(channel.name)
        self._message_callback: Optional[MessageCallback] = None
        self._error_callback: Optional[ErrorCallback] = None
        self._close_lock = threading.Lock()
        self._closed = False

        # Stats
        self._received = 0
        self._errors = 0
        self._connect_calls = 0
        self._last_message_at: float = 0

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def connection(self) -> Connection:
        return self._connection

    def on_message(self, callback: MessageCallback) -> None:
        """Registra el handler invocado una vez por payload crudo, en orden de recepción."""
        self._message_callback = callback

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callback = callback

    def connect(self) -> Connection:
        """Abre el transporte.

        Returns:
            La conexión, en estado connected y con intentos a 0.

        Raises:
            ConnectError: si el transporte no pudo abrirse.
        """
        if self._connection.dead:
            raise ConnectError(self._channel.name, "connection is permanently closed")

        self._connect_calls += 1
        self._connection.mark_connecting()
        try:
            self._open()
        except ConnectError:
            self._connection.mark_degraded()
            raise
        except Exception as e:
            self._connection.mark_degraded()
            raise ConnectError(self._channel.name, str(e)) from e

        with self._close_lock:
            self._closed = False
        self._connection.mark_connected()
        logger.info(
            "[TRANSPORT] Connected channel=%s kind=%s",
            self._channel.name,
            self.transport_name,
        )
        return self._connection

    def close(self) -> None:
        """Cierra el transporte. Idempotente."""
        with self._close_lock:
            already_closed = self._closed
            self._closed = True

        if not already_closed:
            try:
                self._shutdown()
            except Exception as e:
                logger.warning("[TRANSPORT] Error closing channel=%s: %s", self._channel.name, e)

        self._connection.mark_closed()

    def _deliver(self, raw_payload: Any) -> None:
        """Entrega un payload crudo al callback registrado."""
        self._received += 1
        self._last_message_at = time.time()

        callback = self._message_callback
        if callback is None:
            logger.debug("[TRANSPORT] No handler for channel=%s, message ignored", self._channel.name)
            return

        try:
            callback(raw_payload, self._channel)
        except Exception as e:
            self._report_error(e)

    def _report_error(self, error: BaseException, degrade: bool = False) -> None:
        """Notifica un error de runtime sin lanzarlo."""
        self._errors += 1
        if degrade:
            self._connection.mark_degraded()

        callback = self._error_callback
        if callback is None:
            logger.error("[TRANSPORT] Unhandled error channel=%s: %s", self._channel.name, error)
            return

        try:
            callback(self._channel, error)
        except Exception:
            logger.exception("[TRANSPORT] Error callback failed channel=%s", self._channel.name)

    @abstractmethod
    def _open(self) -> None:
        """Abre la conexión subyacente. Lanza excepción si falla."""

    @abstractmethod
    def _shutdown(self) -> None:
        """Libera la conexión subyacente."""

    @property
    @abstractmethod
    def transport_name(self) -> str:
        """Nombre del transporte: memory, mqtt, websocket, polling."""

    @property
    def is_closed(self) -> bool:
        return self._connection.status == ConnectionStatus.CLOSED

    @property
    def stats(self) -> Dict[str, Any]:
        """Estadísticas del transporte."""
        return {
            "transport": self.transport_name,
            "channel": self._channel.name,
            "status": self._connection.status.value,
            "messages_received": self._received,
            "errors": self._errors,
            "connect_calls": self._connect_calls,
            "last_message_at": self._last_message_at,
        }
