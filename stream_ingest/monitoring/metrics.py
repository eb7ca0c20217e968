"""Métricas Prometheus del pipeline de streams."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

STREAM_MESSAGES = Counter(
    "construction_stream_messages_total",
    "Messages dispatched by channel",
    ["channel", "priority"],
)
STREAM_DROPPED = Counter(
    "construction_stream_dropped_total",
    "Malformed payloads dropped by the dispatcher",
    ["channel"],
)
STREAM_ERRORS = Counter(
    "construction_stream_errors_total",
    "Pipeline errors by kind",
    ["kind"],  # transport, dispatch, persistence, critical_persistence, callback
)
STREAM_BATCH_FLUSHES = Counter(
    "construction_stream_batch_flushes_total",
    "Medium-priority batch flushes",
    ["channel", "status"],  # ok, failed
)
CHANNEL_CONNECTED = Gauge(
    "construction_stream_channel_connected",
    "1 if the channel connection is connected",
    ["channel"],
)
DISPATCH_LATENCY = Histogram(
    "construction_stream_dispatch_seconds",
    "Dispatch + lane handling latency",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
