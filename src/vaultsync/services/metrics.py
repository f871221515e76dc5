"""Prometheus metrics for reconciliation passes.

Both metrics live on the default registry and are labelled by the
VaultSecret's namespace and name plus ``error`` ("true" or "false").
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

LABELS = ("namespace", "name", "error")

RECONCILE_COUNT = Counter(
    "kw_vop_reconcile_count",
    "Counter on how many times the reconcile loop has occurred.",
    LABELS,
)

RECONCILE_DURATION = Histogram(
    "kw_vop_reconcile_duration",
    "Histogram on how long each reconcile loop lasts.",
    LABELS,
    buckets=(0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


def observe_reconcile(namespace: str, name: str, duration: float, *, failed: bool) -> None:
    """Record one finished reconcile pass."""
    labels = {"namespace": namespace, "name": name, "error": "true" if failed else "false"}
    RECONCILE_COUNT.labels(**labels).inc()
    RECONCILE_DURATION.labels(**labels).observe(duration)
