"""Factory de transportes por tipo de canal."""

from __future__ import annotations

import logging
from typing import Optional

from common.config import Settings, get_settings

from ..core.domain.channel import Channel, TransportKind
from ..core.errors import ConfigError
from .base import TransportAdapter

logger = logging.getLogger(__name__)


def build_transport(channel: Channel, settings: Optional[Settings] = None) -> TransportAdapter:
    """Crea el transporte de producción correspondiente al canal."""
    settings = settings or get_settings()

    if channel.transport_kind == TransportKind.TOPIC_BUS:
        from .mqtt import MQTTTransport

        return MQTTTransport(
            channel,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            client_id=settings.mqtt_client_id,
            connect_timeout=settings.connect_timeout_seconds,
        )

    if channel.transport_kind == TransportKind.SOCKET:
        from .websocket import WebSocketTransport

        return WebSocketTransport(channel, connect_timeout=settings.connect_timeout_seconds)

    if channel.transport_kind == TransportKind.POLLING:
        from .polling import PollingTransport

        return PollingTransport(channel, connect_timeout=settings.connect_timeout_seconds)

    raise ConfigError(f"Unsupported transport kind: {channel.transport_kind}")
