"""Prometheus metrics helpers for donor imports and list review."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_import_operations = Counter(
    "roster_import_operations_total",
    "Donor import operations by terminal status.",
    ["status"],
)
_import_rows = Counter(
    "roster_import_rows_total",
    "Donor import rows by reconciliation outcome.",
    ["outcome"],
)
_import_batch_duration = Histogram(
    "roster_import_batch_duration_seconds",
    "Duration of one donor import batch (reconcile plus commit) in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
_import_duration = Histogram(
    "roster_import_duration_seconds",
    "Wall-clock duration of donor import operations in seconds.",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
)
_imports_in_flight = Gauge(
    "roster_imports_in_flight",
    "Donor import operations currently processing in this process.",
)
_review_transitions = Counter(
    "roster_review_transitions_total",
    "Donor list membership transitions by action.",
    ["action"],
)
_lists_generated = Counter(
    "roster_donor_lists_generated_total",
    "Donor lists generated, split by whether an existing list was replaced.",
    ["regenerated"],
)


def record_import_started() -> None:
    _imports_in_flight.inc()


def record_import_finished(
    status: Literal["completed", "error", "cancelled"],
    *,
    duration_seconds: float,
) -> None:
    """Capture the terminal status and duration of one import."""

    _imports_in_flight.dec()
    _import_operations.labels(status=status).inc()
    _import_duration.observe(duration_seconds)


def record_import_batch(*, duration_seconds: float, outcomes: dict[str, int]) -> None:
    _import_batch_duration.observe(duration_seconds)
    for outcome, count in outcomes.items():
        if count:
            _import_rows.labels(outcome=outcome).inc(count)


def record_review_transition(action: str, count: int = 1) -> None:
    if count:
        _review_transitions.labels(action=action).inc(count)


def record_list_generated(*, regenerated: bool) -> None:
    _lists_generated.labels(regenerated="true" if regenerated else "false").inc()
