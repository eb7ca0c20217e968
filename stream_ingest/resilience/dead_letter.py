"""Dead Letter Queue para payloads descartados por el dispatcher.

Guarda el payload crudo y el motivo en un Redis Stream para análisis
posterior. Sin cliente Redis la DLQ queda deshabilitada y solo loguea.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)


class DeadLetterQueue:
    """Dead Letter Queue sobre Redis Streams.

    Attributes:
        stream_name: Nombre del stream en Redis
        max_len: Máximo de entradas (aproximado, MAXLEN ~)
    """

    STREAM_NAME = "dlq:streams"
    DEFAULT_MAX_LEN = 10000

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        stream_name: str = STREAM_NAME,
        max_len: int = DEFAULT_MAX_LEN,
    ):
        self._redis = redis_client
        self._stream = stream_name
        self._max_len = max_len
        self._lock = threading.Lock()

        self._total_sent = 0
        self._send_errors = 0

    @classmethod
    def from_url(cls, url: Optional[str], stream_name: str = STREAM_NAME) -> "DeadLetterQueue":
        if not url:
            return cls(None, stream_name=stream_name)
        client = redis.Redis.from_url(url, socket_timeout=5.0, socket_connect_timeout=5.0)
        return cls(client, stream_name=stream_name)

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "enabled": self.enabled,
                "stream_name": self._stream,
                "total_sent": self._total_sent,
                "send_errors": self._send_errors,
            }

    def send(self, payload: Any, error: str, channel_name: str) -> bool:
        """Envía un payload descartado a la DLQ.

        Returns:
            True si se envió, False si falló o la DLQ está deshabilitada.
        """
        if self._redis is None:
            logger.warning(
                "DLQ_DISABLED channel=%s error=%s payload=%s",
                channel_name, error, str(payload)[:200],
            )
            return False

        if isinstance(payload, bytes):
            payload_str = payload.decode("utf-8", errors="replace")
        elif isinstance(payload, (dict, list)):
            payload_str = json.dumps(payload, default=str)
        else:
            payload_str = str(payload)

        entry = {
            "payload": payload_str[:5000],
            "error": str(error)[:1000],
            "channel": channel_name,
            "timestamp": str(time.time()),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            self._redis.xadd(self._stream, entry, maxlen=self._max_len, approximate=True)
        except redis.RedisError as e:
            with self._lock:
                self._send_errors += 1
            logger.error("DLQ_SEND_FAILED channel=%s err=%s", channel_name, e)
            return False

        with self._lock:
            self._total_sent += 1
        logger.info("DLQ_SENT channel=%s error=%s", channel_name, str(error)[:100])
        return True
