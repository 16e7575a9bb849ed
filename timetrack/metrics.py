"""Prometheus metrics for the session service and the sync client.

The module bundles all counters in one place so importing side-effects
(metric registration) happen exactly once per process.  Routers and
services can simply ``from timetrack.metrics import …`` and increment.
"""

from __future__ import annotations

from prometheus_client import Counter

# Server ---------------------------------------------------------------------

sessions_created_total = Counter(
    "timetrack_sessions_created_total",
    "Total number of sessions created on the server",
)

user_codes_generated_total = Counter(
    "timetrack_user_codes_generated_total",
    "Total number of sync user codes minted",
)

sync_operations_processed_total = Counter(
    "timetrack_sync_operations_processed_total",
    "Queued operations applied through the batch sync endpoint",
    labelnames=("type", "result"),
)

# Client ---------------------------------------------------------------------

operations_enqueued_total = Counter(
    "timetrack_client_operations_enqueued_total",
    "Operations appended to the local pending queue",
    labelnames=("type",),
)

operations_dropped_total = Counter(
    "timetrack_client_operations_dropped_total",
    "Queued operations dropped after exhausting their retries",
    labelnames=("type",),
)

sync_cycles_total = Counter(
    "timetrack_client_sync_cycles_total",
    "Drain/fetch cycles executed by the sync engine",
    labelnames=("kind", "result"),
)

external_api_retry_total = Counter(
    "timetrack_external_api_retry_total",
    "Total retries executed against the remote session service",
    labelnames=("provider", "function"),
)


__all__ = [
    "sessions_created_total",
    "user_codes_generated_total",
    "sync_operations_processed_total",
    "operations_enqueued_total",
    "operations_dropped_total",
    "sync_cycles_total",
    "external_api_retry_total",
]
