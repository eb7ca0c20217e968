"""ReconnectionSupervisor - Health check periódico y reconexión acotada.

Política única de reintento del sistema: delay fijo entre intentos y un tope
de intentos por conexión. Al agotar el tope la conexión queda cerrada para
siempre y se emite channelDead. Sin backoff exponencial.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from .core.domain.connection import ConnectionStatus
from .core.domain.events import CHANNEL_DEAD, StreamEvent
from .core.errors import ConnectError
from .events import EventBus
from .monitoring import metrics
from .monitoring.stats import StreamStatistics
from .transports.base import TransportAdapter

logger = logging.getLogger(__name__)


class ReconnectionSupervisor:
    """Vigila las conexiones y reconecta las que no están connected."""

    DEFAULT_INTERVAL = 10.0
    DEFAULT_DELAY = 5.0
    DEFAULT_MAX_ATTEMPTS = 10

    def __init__(
        self,
        transports: Dict[str, TransportAdapter],
        events: EventBus,
        stats: StreamStatistics,
        max_reconnect_attempts: int = DEFAULT_MAX_ATTEMPTS,
        reconnect_delay: float = DEFAULT_DELAY,
        interval: float = DEFAULT_INTERVAL,
    ):
        """Inicializa el supervisor.

        Args:
            transports: Transportes por nombre de canal (no se copia)
            events: Bus donde se emite channelDead
            stats: Estadísticas donde se cuentan los fallos de conexión
            max_reconnect_attempts: Intentos fallidos antes de dar el canal por muerto
            reconnect_delay: Espera fija antes de cada intento, en segundos
            interval: Intervalo del health check, en segundos
        """
        self._transports = transports
        self._events = events
        self._stats = stats
        self._max_attempts = max_reconnect_attempts
        self._delay = reconnect_delay
        self._interval = interval

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._reconnects = 0
        self._dead_channels = 0

    def start(self) -> None:
        """Inicia el hilo de monitoreo."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="reconnection-supervisor", daemon=True)
        self._thread.start()
        logger.info(
            "[SUPERVISOR] Started interval=%.1fs delay=%.1fs max_attempts=%d",
            self._interval, self._delay, self._max_attempts,
        )

    def stop(self) -> None:
        """Detiene el monitoreo y espera a que el hilo termine."""
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=self._delay + self._interval + 5.0)
        logger.info(
            "[SUPERVISOR] Stopped. reconnects=%d dead_channels=%d",
            self._reconnects, self._dead_channels,
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.check_health()
            except Exception:
                logger.exception("[SUPERVISOR] Health check failed")

    def check_health(self) -> int:
        """Revisa todas las conexiones. Retorna cuántos intentos se hicieron."""
        attempts = 0
        for name, transport in list(self._transports.items()):
            connection = transport.connection
            status = connection.status
            metrics.CHANNEL_CONNECTED.labels(channel=name).set(1 if status == ConnectionStatus.CONNECTED else 0)

            if status in (ConnectionStatus.CONNECTED, ConnectionStatus.CLOSED):
                continue
            if self._stop_event.is_set():
                break

            logger.warning("[SUPERVISOR] Channel %s is not healthy: %s", name, status.value)
            self.attempt_reconnect(name)
            attempts += 1
        return attempts

    def attempt_reconnect(self, channel_name: str) -> bool:
        """Un intento de reconexión tras el delay fijo.

        Returns:
            True si el canal quedó connected.
        """
        transport = self._transports[channel_name]
        connection = transport.connection
        if connection.dead or connection.status == ConnectionStatus.CLOSED:
            return False

        attempt = connection.increment_attempts()
        logger.info(
            "[SUPERVISOR] Reconnecting %s (attempt %d/%d)",
            channel_name, attempt, self._max_attempts,
        )

        if self._stop_event.wait(self._delay):
            return False

        try:
            transport.connect()
        except ConnectError as e:
            self._stats.record_error("transport")
            logger.warning("[SUPERVISOR] Reconnect failed %s: %s", channel_name, e.reason)
            if attempt >= self._max_attempts:
                self._declare_dead(channel_name, attempt, e)
            return False

        self._reconnects += 1
        metrics.CHANNEL_CONNECTED.labels(channel=channel_name).set(1)
        logger.info("[SUPERVISOR] Channel %s reconnected after %d attempts", channel_name, attempt)
        return True

    def _declare_dead(self, channel_name: str, attempts: int, error: ConnectError) -> None:
        transport = self._transports[channel_name]
        transport.close()
        transport.connection.mark_closed(dead=True)
        self._dead_channels += 1
        metrics.CHANNEL_CONNECTED.labels(channel=channel_name).set(0)
        logger.error(
            "[SUPERVISOR] Channel %s is dead after %d attempts, no more reconnects",
            channel_name, attempts,
        )
        self._events.emit(StreamEvent.build(
            CHANNEL_DEAD, channel_name, {}, attempts=attempts, error=error.reason,
        ))

    @property
    def stats(self) -> dict:
        return {
            "running": self.is_running,
            "reconnects": self._reconnects,
            "dead_channels": self._dead_channels,
            "max_reconnect_attempts": self._max_attempts,
            "reconnect_delay": self._delay,
            "interval": self._interval,
        }
