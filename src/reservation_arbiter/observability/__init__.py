# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability and metrics for the Reservation Arbiter.

Classes:
    ArbitrationMetrics: Prometheus-backed collector with a dict mirror for JSON export.
    MetricDefinition: Schema for a library metric.

Functions:
    outcome_for: Map an exception to its outcome label.

Constants:
    All metric name constants from constants module.
"""

from .collector import (
    METRIC_DEFINITIONS,
    ArbitrationMetrics,
    MetricDefinition,
    outcome_for,
)
from .constants import (
    LATENCY_BUCKETS,
    METRIC_PREFIX,
    OPERATION_SECONDS,
    OUTCOME_BY_ERROR,
    OUTCOME_CANCELLED,
    OUTCOME_COMMITTED,
    OUTCOME_ERROR,
    REQUESTS_TOTAL,
    TRANSACTION_RETRIES_TOTAL,
)

__all__ = [
    "LATENCY_BUCKETS",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    "OPERATION_SECONDS",
    "OUTCOME_BY_ERROR",
    "OUTCOME_CANCELLED",
    "OUTCOME_COMMITTED",
    "OUTCOME_ERROR",
    "REQUESTS_TOTAL",
    "TRANSACTION_RETRIES_TOTAL",
    "ArbitrationMetrics",
    "MetricDefinition",
    "outcome_for",
]
