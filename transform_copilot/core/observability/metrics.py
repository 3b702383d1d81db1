from __future__ import annotations

from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter
from prometheus_client import Histogram

# Named counters (custom)
_NAMED = Counter()

NODES_TOTAL = PromCounter(
    "transform_nodes_total",
    "Executed nodes by resource type and final status",
    ["resource_type", "status"],
)

NODE_DURATION_SECONDS = Histogram(
    "transform_node_duration_seconds",
    "Node execution time in seconds",
    ["resource_type"],
)

FRESHNESS_CHECKS_TOTAL = PromCounter(
    "transform_freshness_checks_total",
    "Source freshness checks by status",
    ["status"],
)


def reset_metrics() -> None:
    """
    Test helper: clears named counters to avoid cross-test leakage.
    Prometheus collectors are process-global and are not reset.
    """
    _NAMED.clear()


def observe_node(resource_type: str, status: str, seconds: float) -> None:
    NODES_TOTAL.labels(resource_type=resource_type, status=status).inc()
    NODE_DURATION_SECONDS.labels(resource_type=resource_type).observe(max(seconds, 0.0))
    _NAMED[f"nodes_{resource_type}_{status}"] += 1


def observe_freshness(status: str) -> None:
    FRESHNESS_CHECKS_TOTAL.labels(status=status).inc()
    _NAMED[f"freshness_{status}"] += 1


def inc_named(name: str, value: int = 1) -> None:
    """
    Increment a named counter (used by health endpoints, etc.).
    """
    if not name:
        return
    _NAMED[name] += int(value)


def snapshot_named() -> Dict[str, int]:
    return dict(_NAMED)
