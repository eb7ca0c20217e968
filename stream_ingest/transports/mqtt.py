"""Transporte MQTT (topic bus) sobre paho-mqtt."""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from ..core.domain.channel import Channel
from ..core.errors import ConnectError
from .base import TransportAdapter

logger = logging.getLogger(__name__)

DEFAULT_BROKER = "mqtt://localhost:1883"


class MQTTTransport(TransportAdapter):
    """Cliente MQTT ligero para un canal.

    Responsabilidades:
    - Conexión/desconexión al broker
    - Suscripción a los topics del canal (con la QoS del canal)
    - Entrega de payloads crudos al dispatcher
    """

    def __init__(
        self,
        channel: Channel,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "construction-streams",
        connect_timeout: float = 5.0,
    ):
        super().__init__(channel)
        parts = urlsplit(channel.endpoint or DEFAULT_BROKER)
        self.broker_host = parts.hostname or "localhost"
        self.broker_port = parts.port or 1883
        self.username = username or parts.username
        self.password = password or parts.password
        self.client_id = f"{client_id}-{channel.name.lower()}-{int(time.time())}"
        self.connect_timeout = connect_timeout

        self._client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._stopping = False

    def _open(self) -> None:
        self._release_client()
        self._stopping = False
        self._connected.clear()

        client = mqtt.Client(
            client_id=self.client_id,
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        if self.username and self.password:
            client.username_pw_set(self.username, self.password)

        logger.info(
            "[MQTT] Connecting channel=%s to %s:%d",
            self.channel.name,
            self.broker_host,
            self.broker_port,
        )
        self._client = client
        try:
            client.connect(self.broker_host, self.broker_port, keepalive=60)
        except OSError as e:
            self._client = None
            raise ConnectError(self.channel.name, f"broker unreachable: {e}") from e
        client.loop_start()

        # Esperar CONNACK
        if not self._connected.wait(timeout=self.connect_timeout):
            self._release_client()
            raise ConnectError(self.channel.name, "connection timeout")

    def _shutdown(self) -> None:
        self._stopping = True
        self._release_client()

    def _release_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.loop_stop()
            client.disconnect()
        except Exception as e:
            logger.warning("[MQTT] Disconnect error channel=%s: %s", self.channel.name, e)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de conexión."""
        if reason_code.is_failure:
            logger.error("[MQTT] Connection refused channel=%s rc=%s", self.channel.name, reason_code)
            return

        for topic in self.channel.topics:
            client.subscribe(topic, qos=self.channel.qos)
            logger.info("[MQTT] Subscribed channel=%s topic=%s qos=%d", self.channel.name, topic, self.channel.qos)
        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de desconexión."""
        self._connected.clear()
        if self._stopping:
            return
        logger.warning("[MQTT] Disconnected channel=%s (rc=%s)", self.channel.name, reason_code)
        self._report_error(
            ConnectError(self.channel.name, f"disconnected rc={reason_code}"),
            degrade=True,
        )

    def _on_message(self, client, userdata, msg):
        """Callback de mensaje - delega al dispatcher."""
        self._deliver(msg.payload)

    @property
    def transport_name(self) -> str:
        return "mqtt"
