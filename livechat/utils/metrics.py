"""Metrics collection for chat adapters.

This module provides lightweight in-process counters, gauges and histograms
keyed by name and labels, plus a context manager that times an operation and
counts its successes and failures.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Deque, Dict, FrozenSet, List, Optional, Tuple


logger = logging.getLogger(__name__)


class MetricType(str, Enum):
    """Types of metrics."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricPoint:
    """A single metric data point."""

    timestamp: datetime
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


class Metric:
    """A named metric with default labels."""

    def __init__(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        labels: Optional[Dict[str, str]] = None,
        max_points: int = 500,
    ):
        self.name = name
        self.type = metric_type
        self.description = description
        self.labels = labels or {}

        self._points: Deque[MetricPoint] = deque(maxlen=max_points)
        self._current_value: float = 0.0
        self._count = 0
        self._sum = 0.0
        self._lock = Lock()

    @property
    def current_value(self) -> float:
        """Get current metric value."""
        return self._current_value

    def increment(
        self, value: float = 1.0, labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Increment counter metric."""
        if self.type != MetricType.COUNTER:
            raise ValueError(f"Cannot increment non-counter metric: {self.name}")

        with self._lock:
            self._current_value += value
            self._record(self._current_value, labels)

    def set(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Set gauge metric value."""
        if self.type != MetricType.GAUGE:
            raise ValueError(f"Cannot set non-gauge metric: {self.name}")

        with self._lock:
            self._current_value = value
            self._record(value, labels)

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Observe a value (for histograms)."""
        if self.type != MetricType.HISTOGRAM:
            raise ValueError(f"Cannot observe non-histogram metric: {self.name}")

        with self._lock:
            self._count += 1
            self._sum += value
            self._record(value, labels)

    def _record(self, value: float, labels: Optional[Dict[str, str]]) -> None:
        self._points.append(
            MetricPoint(datetime.now(timezone.utc), value, {**self.labels, **(labels or {})})
        )

    def get_points(self) -> List[MetricPoint]:
        with self._lock:
            return list(self._points)

    def get_stats(self) -> Dict[str, Any]:
        """Get metric statistics."""
        with self._lock:
            stats = {
                "name": self.name,
                "type": self.type.value,
                "labels": self.labels,
                "current_value": self._current_value,
            }
            if self.type == MetricType.HISTOGRAM:
                stats["count"] = self._count
                stats["sum"] = self._sum
            return stats


_MetricKey = Tuple[str, FrozenSet[Tuple[str, str]]]


class MetricsRegistry:
    """Registry for managing metrics."""

    def __init__(self):
        self._metrics: Dict[_MetricKey, Metric] = {}
        self._lock = Lock()

    def get_or_create(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        labels: Optional[Dict[str, str]] = None,
    ) -> Metric:
        key = (name, frozenset((labels or {}).items()))
        with self._lock:
            existing = self._metrics.get(key)
            if existing is not None:
                if existing.type != metric_type:
                    raise ValueError(
                        f"Metric '{name}' already exists with different type: "
                        f"{existing.type} != {metric_type}"
                    )
                return existing

            metric = Metric(name, metric_type, description, labels)
            self._metrics[key] = metric
            logger.debug(f"Created {metric_type.value} metric: {name} {labels or {}}")
            return metric

    def get_metric(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[Metric]:
        with self._lock:
            return self._metrics.get((name, frozenset((labels or {}).items())))

    def get_all_stats(self) -> List[Dict[str, Any]]:
        with self._lock:
            metrics = list(self._metrics.values())
        return [metric.get_stats() for metric in metrics]


# Global instance
metrics_registry = MetricsRegistry()


def counter(
    name: str, description: str = "", labels: Optional[Dict[str, str]] = None
) -> Metric:
    """Create or get a counter metric."""
    return metrics_registry.get_or_create(name, MetricType.COUNTER, description, labels)


def gauge(
    name: str, description: str = "", labels: Optional[Dict[str, str]] = None
) -> Metric:
    """Create or get a gauge metric."""
    return metrics_registry.get_or_create(name, MetricType.GAUGE, description, labels)


def histogram(
    name: str, description: str = "", labels: Optional[Dict[str, str]] = None
) -> Metric:
    """Create or get a histogram metric."""
    return metrics_registry.get_or_create(name, MetricType.HISTOGRAM, description, labels)


class MetricsContext:
    """Async context manager timing an operation and counting its outcome."""

    def __init__(self, operation_name: str, labels: Optional[Dict[str, str]] = None):
        self.operation_name = operation_name
        self.labels = labels or {}

        self.timer_metric = histogram(
            f"{operation_name}_duration_seconds",
            f"Duration of {operation_name} operations in seconds",
            self.labels,
        )
        self.success_counter = counter(
            f"{operation_name}_success_total",
            f"Total successful {operation_name} operations",
            self.labels,
        )
        self.error_counter = counter(
            f"{operation_name}_error_total",
            f"Total failed {operation_name} operations",
            self.labels,
        )

        self.start_time: Optional[float] = None

    async def __aenter__(self):
        self.start_time = time.monotonic()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.timer_metric.observe(time.monotonic() - self.start_time)

        if exc_type is None:
            self.success_counter.increment()
        else:
            self.error_counter.increment(labels={"error_type": exc_type.__name__})

        return False
