"""Taxonomía de errores del pipeline de ingesta.

Solo ConfigError (arranque) y PersistenceError en el carril critical se
propagan al llamador. El resto se loguea, se cuenta en estadísticas y se
notifica con los eventos streamError / channelDead.
"""

from __future__ import annotations

from typing import Optional


class StreamIngestError(Exception):
    """Base de todos los errores del pipeline."""


class ConfigError(StreamIngestError):
    """Registro de canal inválido (nombre duplicado, prioridad desconocida...)."""


class ChannelNotFound(StreamIngestError, KeyError):
    """El canal pedido no está registrado."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Channel '{name}' is not registered")

    def __str__(self) -> str:
        return self.args[0]


class ConnectError(StreamIngestError):
    """Fallo de conexión a nivel de transporte."""

    def __init__(self, channel_name: str, reason: str):
        self.channel_name = channel_name
        self.reason = reason
        super().__init__(f"[{channel_name}] connect failed: {reason}")


class DispatchError(StreamIngestError):
    """Payload crudo malformado; el mensaje se descarta."""


class PersistenceError(StreamIngestError):
    """Fallo de escritura en el sink."""

    def __init__(self, table: str, reason: str, rows: int = 1):
        self.table = table
        self.reason = reason
        self.rows = rows
        super().__init__(f"write to '{table}' failed ({rows} rows): {reason}")


def describe(error: Optional[BaseException]) -> str:
    """Texto corto para logs y eventos."""
    if error is None:
        return ""
    return f"{type(error).__name__}: {str(error)[:200]}"
