"""Bus de eventos síncrono para observadores externos."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List

from .core.domain.events import StreamEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[StreamEvent], None]

ANY_EVENT = "*"


class EventBus:
    """Registro de handlers por nombre de evento.

    Los handlers se ejecutan en el hilo que emite. Una excepción en un handler
    se loguea y no llega al pipeline.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._emitted = 0
        self._handler_errors = 0

    def on(self, name: str, handler: EventHandler) -> None:
        with self._lock:
            self._handlers[name].append(handler)

    def off(self, name: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, event: StreamEvent) -> int:
        """Entrega el evento a sus handlers. Retorna cuántos lo recibieron."""
        with self._lock:
            handlers = list(self._handlers.get(event.name, ())) + list(self._handlers.get(ANY_EVENT, ()))
            self._emitted += 1

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                with self._lock:
                    self._handler_errors += 1
                logger.exception(
                    "[EVENTS] Handler failed event=%s channel=%s",
                    event.name,
                    event.channel_name,
                )
        return delivered

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "emitted": self._emitted,
                "handler_errors": self._handler_errors,
                "subscriptions": {name: len(h) for name, h in self._handlers.items() if h},
            }
