"""Statistics for the stream pipeline.

Thread-safe counters updated from transport threads and read by the
observability surface. Snapshots never block ingestion for longer than a
copy of a few integers.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional

from ..core.domain.connection import Connection
from . import metrics


@dataclass
class StatisticsSnapshot:
    """Read-only view of the pipeline counters."""

    total_messages: int
    messages_per_second: float
    active_channels: int
    error_count: int
    uptime_seconds: float
    dropped_messages: int = 0
    per_channel: Dict[str, int] = field(default_factory=dict)
    errors_by_kind: Dict[str, int] = field(default_factory=dict)
    connections: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_messages": self.total_messages,
            "messages_per_second": self.messages_per_second,
            "active_channels": self.active_channels,
            "error_count": self.error_count,
            "uptime_seconds": round(self.uptime_seconds, 3),
            "dropped_messages": self.dropped_messages,
            "per_channel": dict(self.per_channel),
            "errors_by_kind": dict(self.errors_by_kind),
            "connections": list(self.connections),
        }


class StreamStatistics:
    """Counters for dispatched, dropped and failed messages.

    Usage:
        stats = StreamStatistics()
        stats.start()
        stats.record_message("SENSOR_DATA", "critical")
        snapshot = stats.snapshot(connections)
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        rate_window_seconds: float = 1.0,
    ):
        self._clock = clock
        self._window = rate_window_seconds
        self._lock = threading.Lock()

        self._started_at: Optional[float] = None
        self._total = 0
        self._dropped = 0
        self._errors = 0
        self._per_channel: Dict[str, int] = {}
        self._errors_by_kind: Dict[str, int] = {}
        self._recent: Deque[float] = deque()

    def start(self) -> None:
        with self._lock:
            self._started_at = self._clock()

    def record_message(self, channel_name: str, priority: str) -> None:
        now = self._clock()
        with self._lock:
            self._total += 1
            self._per_channel[channel_name] = self._per_channel.get(channel_name, 0) + 1
            self._recent.append(now)
            self._trim(now)
        metrics.STREAM_MESSAGES.labels(channel=channel_name, priority=priority).inc()

    def record_drop(self, channel_name: str) -> None:
        with self._lock:
            self._dropped += 1
        metrics.STREAM_DROPPED.labels(channel=channel_name).inc()
        self.record_error("dispatch")

    def record_error(self, kind: str) -> None:
        with self._lock:
            self._errors += 1
            self._errors_by_kind[kind] = self._errors_by_kind.get(kind, 0) + 1
        metrics.STREAM_ERRORS.labels(kind=kind).inc()

    def _trim(self, now: float) -> None:
        cutoff = now - self._window
        while self._recent and self._recent[0] <= cutoff:
            self._recent.popleft()

    @property
    def total_messages(self) -> int:
        with self._lock:
            return self._total

    @property
    def dropped_messages(self) -> int:
        with self._lock:
            return self._dropped

    @property
    def error_count(self) -> int:
        with self._lock:
            return self._errors

    def snapshot(self, connections: Iterable[Connection] = ()) -> StatisticsSnapshot:
        connection_list = [c.to_dict() for c in connections]
        now = self._clock()
        with self._lock:
            self._trim(now)
            uptime = now - self._started_at if self._started_at is not None else 0.0
            return StatisticsSnapshot(
                total_messages=self._total,
                messages_per_second=len(self._recent) / self._window,
                active_channels=sum(1 for c in connection_list if c["status"] == "connected"),
                error_count=self._errors,
                uptime_seconds=uptime,
                dropped_messages=self._dropped,
                per_channel=dict(self._per_channel),
                errors_by_kind=dict(self._errors_by_kind),
                connections=connection_list,
            )
