"""Prometheus instruments for authentication use cases."""

from __future__ import annotations

from prometheus_client import Counter

from .domain.results import Result

AUTH_OPERATIONS = Counter(
    "account_auth_operations_total",
    "Authentication use case outcomes.",
    ["operation", "outcome"],
)


def record_outcome(operation: str, result: Result) -> None:
    """Count ``result`` under ``operation`` using its error code, or ``ok``."""
    outcome = "ok" if result.ok else result.code.value
    AUTH_OPERATIONS.labels(operation=operation, outcome=outcome).inc()
