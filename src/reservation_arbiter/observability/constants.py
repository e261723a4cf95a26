# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `reservation_arbiter_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Histogram metrics for time end with `_seconds`

Label Best Practices:
    Labels are limited to bounded, categorical values:
    - `operation` - Arbitrator operation (create, update, cancel)
    - `outcome` - Terminal outcome (committed, cancelled, error or an error code)
    - `reason` - Retry reason (contention, transient)

    NEVER use reservation, resource or user ids as labels.
"""

METRIC_PREFIX = "reservation_arbiter"
"""Prefix for all Prometheus metrics in this library."""

REQUESTS_TOTAL = f"{METRIC_PREFIX}_requests_total"
"""Arbitration requests by operation and terminal outcome."""

TRANSACTION_RETRIES_TOTAL = f"{METRIC_PREFIX}_transaction_retries_total"
"""Transaction attempts that were retried, by reason."""

OPERATION_SECONDS = f"{METRIC_PREFIX}_operation_seconds"
"""Wall time of arbitrator operations including retries."""

LATENCY_BUCKETS = [0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
"""Histogram buckets for operation latency in seconds."""

OUTCOME_COMMITTED = "committed"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_ERROR = "error"

# Outcome label per exception class name
OUTCOME_BY_ERROR = {
    "InvalidIntervalError": "invalid_interval",
    "QuotaExceededError": "quota_exceeded",
    "SlotConflictError": "slot_conflict",
    "ReservationNotFoundError": "not_found",
    "ForbiddenError": "forbidden",
    "GracePeriodExpiredError": "grace_period_expired",
    "ResourceUnavailableError": "resource_unavailable",
    "StorageTransientError": "storage_transient",
    "TransactionConflictError": "storage_transient",
}
