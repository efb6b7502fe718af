"""Prometheus metrics and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server


# Publisher metrics
QUEUE_PUBLISH_TOTAL = Counter(
    "queue_publish_total", "Total publish attempts per logical queue", ["queue", "result"]
)

# Consumer metrics
QUEUE_MESSAGE_TOTAL = Counter(
    "queue_message_total", "Total messages handled per logical queue", ["queue", "status"]
)
QUEUE_HANDLE_LATENCY_SECONDS = Histogram(
    "queue_handle_latency_seconds",
    "Time to handle a single message",
    ["queue"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 30),
)
QUEUE_DEAD_LETTER_TOTAL = Counter(
    "queue_dead_letter_total", "Total messages redirected to a dead-letter queue", ["queue", "dead_letter"]
)
CONSUMER_ERROR_TOTAL = Counter(
    "consumer_error_total", "Total consumer errors by kind", ["queue", "kind"]
)
CONSUMER_RECONNECT_TOTAL = Counter(
    "consumer_reconnect_total", "Total transport reconnects triggered by credential errors", ["queue"]
)

# Operator tooling
QUEUE_MOVED_TOTAL = Counter(
    "queue_moved_total", "Total messages moved between physical queues"
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)
