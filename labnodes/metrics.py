"""Prometheus metrics for node lifecycle operations."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


node_operation_duration = Histogram(
    "labnodes_node_operation_seconds",
    "Duration of node lifecycle operations",
    ["kind", "operation", "status"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)

node_operation_errors = Counter(
    "labnodes_node_operation_errors_total",
    "Total node lifecycle operation errors",
    ["kind", "operation"],
)

readiness_attempts = Counter(
    "labnodes_readiness_attempts_total",
    "Readiness probe attempts by outcome",
    ["kind", "outcome"],
)


@asynccontextmanager
async def track_operation(kind: str, operation: str) -> AsyncIterator[None]:
    """Time a lifecycle operation and count its failures."""
    start = time.monotonic()
    status = "success"
    try:
        yield
    except BaseException:
        status = "error"
        node_operation_errors.labels(kind=kind, operation=operation).inc()
        raise
    finally:
        node_operation_duration.labels(
            kind=kind, operation=operation, status=status
        ).observe(time.monotonic() - start)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
