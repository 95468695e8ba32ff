"""Prometheus metrics for the realtime messaging service."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

# Custom registry so tests and multiple app instances do not collide on the default one
REGISTRY = CollectorRegistry()

# Covers store round-trips from 1ms to 5s
PERSISTENCE_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
)

app_info = Info(
    "marketplace_realtime",
    "Service build information",
    registry=REGISTRY,
)

# WebSocket metrics
websocket_connections_total = Gauge(
    "websocket_connections_total",
    "Current number of registered WebSocket connections",
    registry=REGISTRY,
)

websocket_users_connected = Gauge(
    "websocket_users_connected",
    "Current number of distinct users with at least one open connection",
    registry=REGISTRY,
)

websocket_handshakes_total = Counter(
    "websocket_handshakes_total",
    "WebSocket upgrade attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

websocket_messages_received_total = Counter(
    "websocket_messages_received_total",
    "Total number of WebSocket frames received from clients",
    ["message_type"],
    registry=REGISTRY,
)

websocket_messages_sent_total = Counter(
    "websocket_messages_sent_total",
    "Frames queued on local connections by direct sends and local fan-outs",
    ["message_type"],
    registry=REGISTRY,
)

websocket_fanouts_total = Counter(
    "websocket_fanouts_total",
    "Fan-out and broadcast requests by frame type, whether or not anyone was reached",
    ["message_type"],
    registry=REGISTRY,
)

websocket_frames_dropped_total = Counter(
    "websocket_frames_dropped_total",
    "Outbound frames dropped because a connection's buffer was full",
    registry=REGISTRY,
)

websocket_heartbeat_terminations_total = Counter(
    "websocket_heartbeat_terminations_total",
    "Connections terminated for missing a heartbeat",
    registry=REGISTRY,
)

websocket_connection_duration_seconds = Histogram(
    "websocket_connection_duration_seconds",
    "Duration of WebSocket connections in seconds",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
    registry=REGISTRY,
)

websocket_fanout_recipients = Histogram(
    "websocket_fanout_recipients",
    "Number of local connections reached per fan-out",
    buckets=(0, 1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
    registry=REGISTRY,
)

# Message store metrics
message_store_operation_seconds = Histogram(
    "message_store_operation_seconds",
    "Latency of message store operations in seconds",
    ["operation"],
    buckets=PERSISTENCE_LATENCY_BUCKETS,
    registry=REGISTRY,
)

message_store_errors_total = Counter(
    "message_store_errors_total",
    "Failed message store operations",
    ["operation"],
    registry=REGISTRY,
)
