"""Connection - Handle de runtime de un canal."""

from __future__ import annotations

import threading
from enum import Enum


class ConnectionStatus(str, Enum):
    """Estados de la conexión."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    CLOSED = "closed"


class Connection:
    """Estado de conexión de un canal.

    Las transiciones llegan desde el hilo del transporte y desde el supervisor
    de reconexión, por eso van bajo lock. Una conexión marcada como muerta
    queda cerrada para siempre.
    """

    def __init__(self, channel_name: str):
        self.channel_name = channel_name
        self._status = ConnectionStatus.CONNECTING
        self._reconnect_attempts = 0
        self._dead = False
        self._lock = threading.Lock()

    @property
    def status(self) -> ConnectionStatus:
        with self._lock:
            return self._status

    @property
    def reconnect_attempts(self) -> int:
        with self._lock:
            return self._reconnect_attempts

    @property
    def dead(self) -> bool:
        with self._lock:
            return self._dead

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def mark_connecting(self) -> None:
        with self._lock:
            if self._status != ConnectionStatus.CLOSED:
                self._status = ConnectionStatus.CONNECTING

    def mark_connected(self) -> None:
        with self._lock:
            if self._status == ConnectionStatus.CLOSED:
                return
            self._status = ConnectionStatus.CONNECTED
            self._reconnect_attempts = 0

    def mark_degraded(self) -> None:
        with self._lock:
            if self._status != ConnectionStatus.CLOSED:
                self._status = ConnectionStatus.DEGRADED

    def mark_closed(self, dead: bool = False) -> None:
        with self._lock:
            self._status = ConnectionStatus.CLOSED
            if dead:
                self._dead = True

    def increment_attempts(self) -> int:
        with self._lock:
            self._reconnect_attempts += 1
            return self._reconnect_attempts

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "name": self.channel_name,
                "status": self._status.value,
                "reconnect_attempts": self._reconnect_attempts,
                "dead": self._dead,
            }

    def __repr__(self) -> str:
        return f"Connection({self.channel_name!r}, status={self.status.value})"
