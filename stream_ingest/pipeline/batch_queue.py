"""Colas batch del carril medium.

Una cola por canal. Cuando una cola alcanza el umbral se vacía con una sola
escritura en lote al sink. El umbral acota memoria y antigüedad de los datos.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from ..core.domain.message import Message

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_THRESHOLD = 100


class BatchQueue:
    """Cola ordenada de mensajes pendientes de escritura en lote."""

    def __init__(self, channel_name: str, flush_threshold: int = DEFAULT_FLUSH_THRESHOLD):
        if flush_threshold <= 0:
            raise ValueError("flush_threshold must be positive")
        self.channel_name = channel_name
        self.flush_threshold = flush_threshold
        self._items: List[Message] = []

    def append(self, message: Message) -> Optional[List[Message]]:
        """Agrega un mensaje. Si se alcanza el umbral retorna el lote a escribir y vacía la cola."""
        self._items.append(message)
        if len(self._items) >= self.flush_threshold:
            return self.drain()
        return None

    def drain(self) -> List[Message]:
        batch, self._items = self._items, []
        return batch

    def __len__(self) -> int:
        return len(self._items)


class BatchQueues:
    """Colas por canal bajo un único lock."""

    def __init__(self, flush_threshold: int = DEFAULT_FLUSH_THRESHOLD):
        self.flush_threshold = flush_threshold
        self._queues: Dict[str, BatchQueue] = {}
        self._lock = threading.Lock()

    def append(self, message: Message) -> Optional[List[Message]]:
        with self._lock:
            queue = self._queues.get(message.source_channel)
            if queue is None:
                queue = BatchQueue(message.source_channel, self.flush_threshold)
                self._queues[message.source_channel] = queue
            return queue.append(message)

    def drain(self, channel_name: str) -> List[Message]:
        with self._lock:
            queue = self._queues.get(channel_name)
            return queue.drain() if queue is not None else []

    def drain_all(self) -> Dict[str, List[Message]]:
        with self._lock:
            return {name: q.drain() for name, q in self._queues.items() if len(q)}

    def pending(self, channel_name: str) -> int:
        with self._lock:
            queue = self._queues.get(channel_name)
            return len(queue) if queue is not None else 0

    def pending_total(self) -> int:
        with self._lock:
            return sum(len(q) for q in self._queues.values())
