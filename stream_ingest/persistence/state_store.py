"""Persistencia del estado final de una ejecución (estadísticas + últimos mensajes)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol

import redis

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    def save(self, state: Dict[str, Any]) -> None:
        ...

    def load(self) -> Optional[Dict[str, Any]]:
        ...


class InMemoryStateStore:
    """State store en memoria (tests y ejecuciones sin Redis)."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self.state = initial
        self.saves = 0

    def save(self, state: Dict[str, Any]) -> None:
        # Round-trip JSON: mismo contrato que Redis
        self.state = json.loads(json.dumps(state, default=str))
        self.saves += 1

    def load(self) -> Optional[Dict[str, Any]]:
        return self.state


class RedisStateStore:
    """Guarda el estado como JSON en una clave de Redis."""

    def __init__(self, client: redis.Redis, key: str = "construction_streams:state"):
        self._client = client
        self._key = key

    @classmethod
    def from_url(cls, url: str, key: str = "construction_streams:state") -> "RedisStateStore":
        client = redis.Redis.from_url(url, socket_timeout=5.0, socket_connect_timeout=5.0)
        return cls(client, key=key)

    def save(self, state: Dict[str, Any]) -> None:
        self._client.set(self._key, json.dumps(state, default=str))
        logger.info("[STATE] Saved run state key=%s", self._key)

    def load(self) -> Optional[Dict[str, Any]]:
        raw = self._client.get(self._key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("[STATE] Ignoring unreadable state key=%s: %s", self._key, e)
            return None
