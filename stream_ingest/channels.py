"""Descriptores de canales y set por defecto de streams de obra.

Formato de un descriptor (JSON, camelCase o snake_case):
{
    "name": "SENSOR_DATA",
    "transportKind": "mqtt",
    "topics": ["sensors/+/data", "sensors/+/alerts"],
    "priority": "critical",
    "bufferCapacity": 1000,
    "endpoint": "mqtt://localhost:1883",
    "qos": 2
}
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .core.domain.channel import Channel, Priority, TransportKind
from .core.errors import ConfigError

logger = logging.getLogger(__name__)

ENDPOINT_REQUIRED = frozenset({TransportKind.SOCKET, TransportKind.POLLING})


class ChannelDescriptor(BaseModel):
    """Schema de validación para un canal configurado."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    transport_kind: TransportKind = Field(..., alias="transportKind")
    topics: List[str] = Field(default_factory=list)
    priority: Priority
    buffer_capacity: int = Field(default=1000, gt=0, alias="bufferCapacity")
    endpoint: Optional[str] = None
    qos: int = Field(default=1, ge=0, le=2)
    poll_interval_seconds: float = Field(default=30.0, gt=0, alias="pollIntervalSeconds")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("transport_kind", mode="before")
    @classmethod
    def validate_transport_kind(cls, v: Any) -> TransportKind:
        return TransportKind.parse(v)

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def validate_endpoint(self) -> "ChannelDescriptor":
        # MQTT cae al broker por defecto; socket y polling no tienen fallback
        if self.transport_kind in ENDPOINT_REQUIRED and not (self.endpoint or "").strip():
            raise ValueError(f"endpoint is required for {self.transport_kind.value} channels")
        return self

    def to_channel(self) -> Channel:
        return Channel(
            name=self.name,
            transport_kind=self.transport_kind,
            priority=self.priority,
            topics=tuple(self.topics),
            buffer_capacity=self.buffer_capacity,
            endpoint=self.endpoint,
            qos=self.qos,
            poll_interval_seconds=self.poll_interval_seconds,
        )


def parse_descriptor(config: Union[ChannelDescriptor, dict]) -> ChannelDescriptor:
    """Valida un descriptor; cualquier fallo de validación es ConfigError."""
    if isinstance(config, ChannelDescriptor):
        return config
    try:
        return ChannelDescriptor.model_validate(config)
    except ValidationError as e:
        name = config.get("name") if isinstance(config, dict) else None
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid channel '{name}': {errors}") from e


def load_channel_descriptors(path: Union[str, Path]) -> List[ChannelDescriptor]:
    """Carga descriptores desde un fichero JSON (lista de objetos)."""
    file_path = Path(path)
    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read channels file {file_path}: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("channels", [])
    if not isinstance(raw, list):
        raise ConfigError(f"Channels file {file_path} must contain a list")

    descriptors = [parse_descriptor(item) for item in raw]
    logger.info("[CONFIG] Loaded %d channel descriptors from %s", len(descriptors), file_path)
    return descriptors


def default_channel_descriptors() -> List[ChannelDescriptor]:
    """Streams de obra por defecto; endpoints sobreescribibles por entorno."""
    defaults = [
        {
            "name": "PROJECT_UPDATES",
            "transport_kind": "websocket",
            "endpoint": os.getenv("PROJECT_STREAM_URL", "ws://localhost:8080/projects"),
            "topics": ["schedule", "milestones", "deliverables", "changes"],
            "priority": "high",
        },
        {
            "name": "SENSOR_DATA",
            "transport_kind": "mqtt",
            "endpoint": os.getenv("MQTT_BROKER", "mqtt://localhost:1883"),
            "topics": ["sensors/+/data", "sensors/+/alerts"],
            "qos": 2,
            "priority": "critical",
        },
        {
            "name": "SAFETY_ALERTS",
            "transport_kind": "websocket",
            "endpoint": os.getenv("SAFETY_STREAM_URL", "ws://localhost:8080/safety"),
            "topics": ["incidents", "hazards", "compliance", "emergency"],
            "priority": "critical",
        },
        {
            "name": "PROGRESS_TRACKING",
            "transport_kind": "polling",
            "endpoint": os.getenv("PROGRESS_API", "http://localhost:3000/api/progress"),
            "poll_interval_seconds": 30.0,
            "topics": ["completion", "resources", "productivity"],
            "priority": "medium",
        },
        {
            "name": "QUALITY_CONTROL",
            "transport_kind": "websocket",
            "endpoint": os.getenv("QUALITY_STREAM_URL", "ws://localhost:8080/quality"),
            "topics": ["inspections", "tests", "nonconformances", "approvals"],
            "priority": "high",
        },
    ]
    return [parse_descriptor(item) for item in defaults]
