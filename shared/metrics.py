"""
Shared metrics configuration for the feature flags library.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, CollectorRegistry


class FlagsMetrics:
    """Prometheus counters for cache and store behaviour.

    With ``registry=None`` the metrics still count but are not exported;
    pass ``prometheus_client.REGISTRY`` (or any registry) to expose them.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up flag metrics."""
        self._metrics["flag_cache_lookups_total"] = Counter(
            "flag_cache_lookups_total",
            "Total flag cache lookups",
            ["result"],
            registry=self.registry
        )

        self._metrics["flag_invalidations_total"] = Counter(
            "flag_invalidations_total",
            "Total flag invalidations",
            ["direction"],
            registry=self.registry
        )

        self._metrics["flag_store_errors_total"] = Counter(
            "flag_store_errors_total",
            "Total persistent store errors",
            ["operation", "error_type"],
            registry=self.registry
        )

        self._metrics["flag_degraded_total"] = Counter(
            "flag_degraded_total",
            "Total cache or channel faults recovered by falling through",
            ["component"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_lookup(self, result: str):
        """Record a cache lookup outcome: hit, miss or stale."""
        self._metrics["flag_cache_lookups_total"].labels(result=result).inc()

    def record_invalidation(self, direction: str):
        """Record an invalidation: published or received."""
        self._metrics["flag_invalidations_total"].labels(direction=direction).inc()

    def record_store_error(self, operation: str, error_type: str):
        """Record a persistent store error."""
        self._metrics["flag_store_errors_total"].labels(
            operation=operation,
            error_type=error_type
        ).inc()

    def record_degraded(self, component: str):
        """Record a recovered cache or channel fault."""
        self._metrics["flag_degraded_total"].labels(component=component).inc()

    def value(self, metric_name: str, **labels) -> float:
        """Read the current value of a labelled counter."""
        metric = self._metrics[metric_name]
        with self._lock:
            return metric.labels(**labels)._value.get()
