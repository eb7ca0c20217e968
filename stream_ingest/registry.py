"""StreamRegistry - Fuente única de verdad de los canales configurados."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Union

from .channels import ChannelDescriptor, parse_descriptor
from .core.domain.channel import Channel
from .core.errors import ChannelNotFound, ConfigError

logger = logging.getLogger(__name__)


class StreamRegistry:
    """Registro de canales, de lectura casi exclusiva tras el arranque.

    Uso:
        registry = StreamRegistry()
        registry.register_channel({"name": "SENSOR_DATA", ...})
        channel = registry.get_channel("SENSOR_DATA")
    """

    def __init__(self):
        # dict preserva orden de inserción
        self._channels: Dict[str, Channel] = {}
        self._lock = threading.Lock()

    def register_channel(self, config: Union[ChannelDescriptor, dict]) -> Channel:
        """Registra un canal.

        Raises:
            ConfigError: nombre duplicado, prioridad fuera del enum o
                descriptor inválido.
        """
        descriptor = parse_descriptor(config)
        channel = descriptor.to_channel()

        with self._lock:
            if channel.name in self._channels:
                raise ConfigError(f"Channel '{channel.name}' already registered")
            self._channels[channel.name] = channel

        logger.info(
            "[REGISTRY] Registered channel=%s kind=%s priority=%s topics=%d",
            channel.name,
            channel.transport_kind.value,
            channel.priority.value,
            len(channel.topics),
        )
        return channel

    def register_many(self, configs: Iterable[Union[ChannelDescriptor, dict]]) -> List[Channel]:
        return [self.register_channel(config) for config in configs]

    def get_channel(self, name: str) -> Channel:
        with self._lock:
            channel = self._channels.get(name)
        if channel is None:
            raise ChannelNotFound(name)
        return channel

    def list_channels(self) -> List[Channel]:
        with self._lock:
            return list(self._channels.values())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)
