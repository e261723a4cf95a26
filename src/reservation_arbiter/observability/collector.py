# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Arbitration metrics backed by prometheus_client with a dict mirror.

Every observation is written twice: to Prometheus collectors registered in a
CollectorRegistry (scrapeable through the usual exposition helpers), and to
plain dict counters that ``get_metrics()`` exports as a JSON-safe snapshot.

Usage:
    >>> metrics = ArbitrationMetrics()
    >>> metrics.record_outcome("create", "committed", 0.004)
    >>> metrics.get_metrics()["counters"][REQUESTS_TOTAL]
    {'operation=create,outcome=committed': 1}

Thread Safety:
    The dict mirror is guarded by an RLock; prometheus_client collectors are
    thread-safe on their own.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram

from .constants import (
    LATENCY_BUCKETS,
    OPERATION_SECONDS,
    OUTCOME_BY_ERROR,
    OUTCOME_ERROR,
    REQUESTS_TOTAL,
    TRANSACTION_RETRIES_TOTAL,
)

logger = logging.getLogger(__name__)


@dataclass
class MetricDefinition:
    """Schema for one metric: its type, description and label names."""

    name: str
    metric_type: str  # 'counter', 'histogram'
    description: str
    label_names: tuple[str, ...] = ()
    buckets: list[float] | None = None


METRIC_DEFINITIONS: dict[str, MetricDefinition] = {
    REQUESTS_TOTAL: MetricDefinition(
        REQUESTS_TOTAL,
        "counter",
        "Arbitration requests by terminal outcome",
        ("operation", "outcome"),
    ),
    TRANSACTION_RETRIES_TOTAL: MetricDefinition(
        TRANSACTION_RETRIES_TOTAL,
        "counter",
        "Store transaction retries",
        ("reason",),
    ),
    OPERATION_SECONDS: MetricDefinition(
        OPERATION_SECONDS,
        "histogram",
        "Arbitrator operation latency",
        ("operation",),
        buckets=LATENCY_BUCKETS,
    ),
}


def outcome_for(error: BaseException) -> str:
    """Map an exception to its bounded outcome label."""
    return OUTCOME_BY_ERROR.get(type(error).__name__, OUTCOME_ERROR)


class ArbitrationMetrics:
    """
    Collector for arbitrator request outcomes, retries and latency.

    Args:
        registry: Prometheus registry to register into. Defaults to a private
            CollectorRegistry so several arbitrators (and tests) can coexist in
            one process; pass ``prometheus_client.REGISTRY`` to expose the
            series on the default endpoint.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        self._counters: dict[str, dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self._histograms: dict[str, dict[str, list[float]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._lock = threading.RLock()

        requests = METRIC_DEFINITIONS[REQUESTS_TOTAL]
        retries = METRIC_DEFINITIONS[TRANSACTION_RETRIES_TOTAL]
        latency = METRIC_DEFINITIONS[OPERATION_SECONDS]
        self._prom_requests = Counter(
            requests.name,
            requests.description,
            list(requests.label_names),
            registry=self.registry,
        )
        self._prom_retries = Counter(
            retries.name,
            retries.description,
            list(retries.label_names),
            registry=self.registry,
        )
        self._prom_latency = Histogram(
            latency.name,
            latency.description,
            list(latency.label_names),
            buckets=latency.buckets,
            registry=self.registry,
        )

        logger.debug("ArbitrationMetrics initialized")

    @staticmethod
    def _labels_to_key(labels: dict[str, str]) -> str:
        """Convert labels dict to a stable string key."""
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def record_outcome(
        self, operation: str, outcome: str, duration: float | None = None
    ) -> None:
        """Count one terminal outcome and, if given, its latency."""
        labels = {"operation": operation, "outcome": outcome}
        with self._lock:
            self._counters[REQUESTS_TOTAL][self._labels_to_key(labels)] += 1
            if duration is not None:
                key = self._labels_to_key({"operation": operation})
                observations = self._histograms[OPERATION_SECONDS][key]
                observations.append(duration)
                # Keep only recent observations to bound memory
                if len(observations) > 10000:
                    del observations[:-5000]

        self._prom_requests.labels(**labels).inc()
        if duration is not None:
            self._prom_latency.labels(operation=operation).observe(duration)

    def record_retry(self, reason: str, attempt: int) -> None:
        """Retry callback handed to ``BaseIntervalStore.run_transaction``."""
        with self._lock:
            self._counters[TRANSACTION_RETRIES_TOTAL][
                self._labels_to_key({"reason": reason})
            ] += 1
        self._prom_retries.labels(reason=reason).inc()
        logger.debug(f"Recorded transaction retry ({reason}, attempt {attempt})")

    def get_metrics(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Returns a dict suitable for JSON serialization with structure:
        {
            "counters": {"metric_name": {"label_key": value, ...}, ...},
            "histograms": {"metric_name": {"label_key": {...}, ...}, ...}
        }
        """
        with self._lock:
            counters = {
                name: dict(label_values)
                for name, label_values in self._counters.items()
            }
            histograms: dict[str, dict[str, dict[str, Any]]] = {}
            for name, label_values in self._histograms.items():
                histograms[name] = {}
                for label_key, observations in label_values.items():
                    if observations:
                        histograms[name][label_key] = {
                            "count": len(observations),
                            "sum": sum(observations),
                            "avg": sum(observations) / len(observations),
                            "min": min(observations),
                            "max": max(observations),
                        }

        return {"counters": counters, "histograms": histograms}

    def reset(self) -> None:
        """Clear the dict mirror. Prometheus collectors keep their totals."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


__all__ = [
    "METRIC_DEFINITIONS",
    "ArbitrationMetrics",
    "MetricDefinition",
    "outcome_for",
]
