"""Transporte por polling HTTP sobre httpx.

Consulta el endpoint del canal cada ``poll_interval_seconds`` y entrega el
cuerpo de la respuesta como payload crudo. Si la respuesta es una lista JSON,
cada elemento se entrega por separado.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Optional

import httpx

from ..core.domain.channel import Channel
from ..core.errors import ConfigError, ConnectError
from .base import TransportAdapter

logger = logging.getLogger(__name__)


class PollingTransport(TransportAdapter):
    """Cliente de polling para canales sin push."""

    def __init__(
        self,
        channel: Channel,
        connect_timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__(channel)
        if not channel.endpoint:
            raise ConfigError(f"Channel '{channel.name}' has no polling endpoint")
        self.url = channel.endpoint
        self.interval = channel.poll_interval_seconds
        self.connect_timeout = connect_timeout

        self._client = client
        self._owns_client = client is None
        self._stop_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

    def _params(self) -> dict:
        if not self.channel.topics:
            return {}
        return {"topics": ",".join(self.channel.topics)}

    def _open(self) -> None:
        self._stop_poller()

        if self._client is None:
            self._client = httpx.Client(timeout=self.connect_timeout)

        # Primer poll síncrono: valida que el endpoint responde
        try:
            response = self._client.get(self.url, params=self._params())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ConnectError(self.channel.name, f"poll failed: {e}") from e

        self._stop_event.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            name=f"poller-{self.channel.name}",
            daemon=True,
        )
        self._poll_thread.start()
        self._handle_response(response)

    def _poll_loop(self) -> None:
        """Loop principal del hilo de polling."""
        while not self._stop_event.wait(self.interval):
            try:
                response = self._client.get(self.url, params=self._params())
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning("[POLL] Request failed channel=%s: %s", self.channel.name, e)
                self._report_error(ConnectError(self.channel.name, str(e)), degrade=True)
                return
            self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> None:
        if not response.content:
            return
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            # Payload no JSON: el dispatcher decide si lo descarta
            self._deliver(response.content)
            return

        if isinstance(body, list):
            for item in body:
                self._deliver(item)
        else:
            self._deliver(body)

    def _stop_poller(self) -> None:
        self._stop_event.set()
        thread, self._poll_thread = self._poll_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.connect_timeout)

    def _shutdown(self) -> None:
        self._stop_poller()
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    @property
    def transport_name(self) -> str:
        return "polling"
