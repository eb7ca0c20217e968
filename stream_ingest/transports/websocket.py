"""Transporte WebSocket (socket) con cliente síncrono y hilo lector.

Protocolo con el servidor de streams:
1. Cliente → {type: "subscribe", channel, topics: [...]}
2. Servidor → frames de datos (JSON), uno por mensaje
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import ClientConnection, connect

from ..core.domain.channel import Channel
from ..core.errors import ConfigError, ConnectError
from .base import TransportAdapter

logger = logging.getLogger(__name__)


class WebSocketTransport(TransportAdapter):
    """Cliente WebSocket para un canal de tipo socket."""

    def __init__(self, channel: Channel, connect_timeout: float = 5.0):
        super().__init__(channel)
        if not channel.endpoint:
            raise ConfigError(f"Channel '{channel.name}' has no websocket endpoint")
        self.url = channel.endpoint
        self.connect_timeout = connect_timeout

        self._ws: Optional[ClientConnection] = None
        self._reader: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    def _open(self) -> None:
        self._stopping.set()
        self._release_socket()
        self._stopping.clear()

        logger.info("[WS] Connecting channel=%s url=%s", self.channel.name, self.url)
        try:
            ws = connect(self.url, open_timeout=self.connect_timeout)
        except (OSError, TimeoutError, WebSocketException) as e:
            raise ConnectError(self.channel.name, str(e)) from e

        if self.channel.topics:
            ws.send(json.dumps({
                "type": "subscribe",
                "channel": self.channel.name,
                "topics": list(self.channel.topics),
            }))

        self._ws = ws
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(ws,),
            name=f"ws-reader-{self.channel.name}",
            daemon=True,
        )
        self._reader.start()

    def _read_loop(self, ws: ClientConnection) -> None:
        """Loop del hilo lector: un frame, un payload crudo."""
        try:
            for frame in ws:
                self._deliver(frame)
        except ConnectionClosed as e:
            if not self._stopping.is_set():
                logger.warning("[WS] Connection closed channel=%s: %s", self.channel.name, e)
                self._report_error(ConnectError(self.channel.name, f"socket closed: {e}"), degrade=True)
            return
        except Exception as e:
            if not self._stopping.is_set():
                logger.exception("[WS] Reader failed channel=%s", self.channel.name)
                self._report_error(e, degrade=True)
            return

        # El iterador terminó limpio: el servidor cerró la conexión
        if not self._stopping.is_set():
            self._report_error(ConnectError(self.channel.name, "socket closed by server"), degrade=True)

    def _shutdown(self) -> None:
        self._stopping.set()
        self._release_socket()

    def _release_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                ws.close()
            except Exception as e:
                logger.warning("[WS] Error closing channel=%s: %s", self.channel.name, e)

        reader, self._reader = self._reader, None
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self.connect_timeout)

    @property
    def transport_name(self) -> str:
        return "websocket"
