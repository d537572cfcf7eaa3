"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

REGISTRY = CollectorRegistry()

CHUNK_REPLACES = Counter(
    "vsync_chunk_replaces_total",
    "Chunk set replacements by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

VERIFICATION_MISMATCHES = Counter(
    "vsync_verification_mismatches_total",
    "Post-write verification mismatches",
    labelnames=("phase",),
    registry=REGISTRY,
)

FILES_RECONCILED = Counter(
    "vsync_files_reconciled_total",
    "Files driven through the bulk reconciliation pipeline",
    labelnames=("status",),
    registry=REGISTRY,
)

TRACKER_EVENTS = Counter(
    "vsync_tracker_events_total",
    "Local file events received by the change tracker",
    labelnames=("kind",),
    registry=REGISTRY,
)

PENDING_OPERATIONS = Gauge(
    "vsync_pending_operations",
    "Operations deferred to the coordination document",
    registry=REGISTRY,
)

REMOTE_ONLINE = Gauge(
    "vsync_remote_online",
    "1 when the remote store answered the last reachability check",
    registry=REGISTRY,
)

TASKS_IN_FLIGHT = Gauge(
    "vsync_tasks_in_flight",
    "Processing tasks currently running in the embedding queue",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "CHUNK_REPLACES",
    "VERIFICATION_MISMATCHES",
    "FILES_RECONCILED",
    "TRACKER_EVENTS",
    "PENDING_OPERATIONS",
    "REMOTE_ONLINE",
    "TASKS_IN_FLIGHT",
    "metrics_response",
]
