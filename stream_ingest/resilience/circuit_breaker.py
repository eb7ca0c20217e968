"""Circuit breaker delante del sink relacional.

Evita martillear una BD caída: tras ``failure_threshold`` fallos seguidos el
circuito se abre y las escrituras fallan al instante hasta que pasa
``recovery_timeout_seconds``; entonces deja pasar escrituras de prueba.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

from common.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Estados del circuit breaker."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 30.0
    success_threshold: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout_seconds=settings.cb_recovery_timeout_seconds,
            success_threshold=settings.cb_success_threshold,
        )


class CircuitBreakerOpen(Exception):
    """El circuito está abierto; la llamada no se ejecutó."""

    def __init__(self, name: str, remaining_seconds: float):
        self.name = name
        self.remaining_seconds = remaining_seconds
        super().__init__(f"Circuit breaker '{name}' is OPEN. Retry in {remaining_seconds:.1f}s")


class CircuitBreaker:
    """Uso:
        cb = CircuitBreaker("sink")
        cb.call(lambda: conn.execute(stmt, rows))
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def call(self, func: Callable[[], T]) -> T:
        """Ejecuta ``func`` protegida por el circuito.

        Raises:
            CircuitBreakerOpen: si el circuito está abierto.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                remaining = self._config.recovery_timeout_seconds - (self._clock() - self._opened_at)
                raise CircuitBreakerOpen(self.name, max(0.0, remaining))

        try:
            result = func()
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN:
            return
        if self._clock() - self._opened_at >= self._config.recovery_timeout_seconds:
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0
            logger.info("[CB] '%s': OPEN -> HALF_OPEN", self.name)

    def _on_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._config.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    logger.info("[CB] '%s': HALF_OPEN -> CLOSED (recovered)", self.name)
            else:
                self._failure_count = 0

    def _on_failure(self, error: Exception) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                self._open(error)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self._config.failure_threshold:
                self._open(error)

    def _open(self, error: Exception) -> None:
        previous = self._state
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            "[CB] '%s': %s -> OPEN (failures=%d, error=%s)",
            self.name,
            previous.value.upper(),
            self._failure_count,
            str(error)[:100],
        )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "config": {
                    "failure_threshold": self._config.failure_threshold,
                    "recovery_timeout_seconds": self._config.recovery_timeout_seconds,
                    "success_threshold": self._config.success_threshold,
                },
            }
