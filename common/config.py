from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env en la raíz del repo, junto a pyproject.toml.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_list(name: str, default: str = "") -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    redis_url: Optional[str] = None

    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_client_id: str = "construction-streams"

    channels_file: Optional[str] = None
    safety_channels: Tuple[str, ...] = ("SAFETY_ALERTS",)

    # Supervisor de reconexión (delay fijo, sin backoff)
    max_reconnect_attempts: int = 10
    reconnect_delay_seconds: float = 5.0
    health_check_interval_seconds: float = 10.0
    connect_timeout_seconds: float = 5.0

    # Cola batch del carril medium
    batch_flush_threshold: int = 100

    # Tablas del sink
    stream_table: str = "construction_stream_data"
    emergency_table: str = "construction_emergency_events"

    state_key: str = "construction_streams:state"
    dlq_stream: str = "dlq:streams"

    cb_failure_threshold: int = 5
    cb_recovery_timeout_seconds: float = 30.0
    cb_success_threshold: int = 2

    api_port: Optional[int] = None
    log_level: str = "INFO"


def get_settings() -> Settings:
    # Carga el .env (si existe) sin pisar variables reales del entorno.
    env_file = os.getenv("STREAM_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        redis_url=os.getenv("REDIS_URL") or None,
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "construction-streams"),
        channels_file=os.getenv("STREAM_CHANNELS_FILE") or None,
        safety_channels=_env_list("STREAM_SAFETY_CHANNELS", "SAFETY_ALERTS"),
        max_reconnect_attempts=int(os.getenv("STREAM_MAX_RECONNECT_ATTEMPTS", "10")),
        reconnect_delay_seconds=float(os.getenv("STREAM_RECONNECT_DELAY", "5")),
        health_check_interval_seconds=float(os.getenv("STREAM_HEALTH_INTERVAL", "10")),
        connect_timeout_seconds=float(os.getenv("STREAM_CONNECT_TIMEOUT", "5")),
        batch_flush_threshold=int(os.getenv("STREAM_BATCH_THRESHOLD", "100")),
        stream_table=os.getenv("STREAM_TABLE", "construction_stream_data"),
        emergency_table=os.getenv("STREAM_EMERGENCY_TABLE", "construction_emergency_events"),
        state_key=os.getenv("STREAM_STATE_KEY", "construction_streams:state"),
        dlq_stream=os.getenv("STREAM_DLQ", "dlq:streams"),
        cb_failure_threshold=int(os.getenv("CB_FAILURE_THRESHOLD", "5")),
        cb_recovery_timeout_seconds=float(os.getenv("CB_RECOVERY_TIMEOUT", "30")),
        cb_success_threshold=int(os.getenv("CB_SUCCESS_THRESHOLD", "2")),
        api_port=int(os.environ["STREAM_API_PORT"]) if os.getenv("STREAM_API_PORT") else None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
