"""
Metrics Collection and Performance Monitoring
Provides instrumentation for the classification engine.
"""
import time
import logging
from typing import Dict, Any, Optional, Mapping
from collections import defaultdict
from threading import Lock


logger = logging.getLogger("VigilMetrics")


class MetricsCollector:
    """
    Collects and aggregates engine metrics.
    Thread-safe singleton for metrics collection.
    """

    _instance = None
    _lock = Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timers: Dict[str, list] = defaultdict(list)
        self._lock = Lock()
        self._initialized = True

        logger.info("[METRICS] Collector initialized")

    def increment(self, metric_name: str, value: int = 1, tags: Optional[Dict] = None) -> None:
        """
        Increment a counter metric.

        Args:
            metric_name: Name of the metric
            value: Value to increment by
            tags: Optional tags for the metric
        """
        with self._lock:
            key = self._make_key(metric_name, tags)
            self.counters[key] += value

    def gauge(self, metric_name: str, value: float, tags: Optional[Dict] = None) -> None:
        """
        Set a gauge metric (current value).

        Args:
            metric_name: Name of the metric
            value: Current value
            tags: Optional tags for the metric
        """
        with self._lock:
            key = self._make_key(metric_name, tags)
            self.gauges[key] = value

    def timing(self, metric_name: str, duration_ms: float, tags: Optional[Dict] = None) -> None:
        """
        Record a timing metric.

        Args:
            metric_name: Name of the metric
            duration_ms: Duration in milliseconds
            tags: Optional tags for the metric
        """
        with self._lock:
            key = self._make_key(metric_name, tags)
            self.timers[key].append(duration_ms)

            # Keep only last 100 measurements per metric
            if len(self.timers[key]) > 100:
                self.timers[key] = self.timers[key][-100:]

    def _make_key(self, metric_name: str, tags: Optional[Dict] = None) -> str:
        """Create a metric key with tags."""
        if not tags:
            return metric_name

        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{metric_name}[{tag_str}]"

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a summary of all collected metrics.

        Returns:
            Dict: Metrics summary
        """
        with self._lock:
            summary = {
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
                "timers": {}
            }

            for key, values in self.timers.items():
                if values:
                    summary["timers"][key] = {
                        "count": len(values),
                        "min": min(values),
                        "max": max(values),
                        "mean": sum(values) / len(values),
                        "p50": self._percentile(values, 50),
                        "p95": self._percentile(values, 95),
                        "p99": self._percentile(values, 99)
                    }

            return summary

    def _percentile(self, values: list, percentile: int) -> float:
        """Calculate percentile of values."""
        if not values:
            return 0.0

        sorted_values = sorted(values)
        index = int((percentile / 100.0) * len(sorted_values))
        index = min(index, len(sorted_values) - 1)
        return sorted_values[index]

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.timers.clear()
            logger.info("[METRICS] All metrics reset")

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus format.

        Returns:
            str: Prometheus-formatted metrics
        """
        lines = []
        lines.append("# HELP vigil_metrics Classification engine metrics")
        lines.append("# TYPE vigil_metrics gauge")

        with self._lock:
            for key, value in self.counters.items():
                lines.append(f"vigil_counter_{self._prometheus_key(key)} {value}")

            for key, value in self.gauges.items():
                lines.append(f"vigil_gauge_{self._prometheus_key(key)} {value}")

            for key, values in self.timers.items():
                if values:
                    avg = sum(values) / len(values)
                    lines.append(f"vigil_timing_avg_{self._prometheus_key(key)} {avg}")

        return "\n".join(lines)

    @staticmethod
    def _prometheus_key(key: str) -> str:
        if "[" not in key:
            return key
        name, tag_str = key[:-1].split("[", 1)
        labels = ",".join(
            f'{k}="{v}"' for k, v in (pair.split("=", 1) for pair in tag_str.split(","))
        )
        return f"{name}{{{labels}}}"


class Timer:
    """
    Context manager for timing code blocks.

    Example:
        with Timer("rule_import_ms", tags={"source": "yaml"}):
            # Code to time
            pass
    """

    def __init__(self, metric_name: str, tags: Optional[Dict] = None,
                 collector: Optional[MetricsCollector] = None):
        self.metric_name = metric_name
        self.tags = tags
        self.collector = collector or MetricsCollector()
        self.start_time = None
        self.duration_ms = None

    def __enter__(self):
        """Start timing."""
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop timing and record metric."""
        self.duration_ms = (time.time() - self.start_time) * 1000
        self.collector.timing(self.metric_name, self.duration_ms, self.tags)


class ClassificationMetrics:
    """
    High-level metrics for the classification engine.
    Provides convenient methods for common metrics.
    """

    def __init__(self):
        self.collector = MetricsCollector()

    def record_classification(self, outcomes: Mapping[str, Any]) -> None:
        """Record one classify call and which dimensions produced a label."""
        self.collector.increment("classifications_total")

        for rule_type, outcome in outcomes.items():
            if outcome is None:
                self.collector.increment("dimension_unclassified", tags={"rule_type": rule_type})
            else:
                self.collector.increment("dimension_classified", tags={"rule_type": rule_type})

    def record_skipped_rule(self, rule_type: str) -> None:
        """Record a rule skipped because its pattern no longer compiles."""
        self.collector.increment("rule_skipped_compile_failure", tags={"rule_type": rule_type})

    def record_tester_run(self, rules_evaluated: int, rules_matched: int) -> None:
        """Record a diagnostic tester run."""
        self.collector.increment("tester_runs_total")
        self.collector.gauge("tester_last_rules_evaluated", rules_evaluated)
        self.collector.gauge("tester_last_rules_matched", rules_matched)

    def record_rule_mutation(self, action: str) -> None:
        """Record an administrator edit (create, update, status, reorder)."""
        self.collector.increment("rule_mutations_total")
        self.collector.increment("rule_mutation", tags={"action": action})

    def record_validation_failure(self, field: str) -> None:
        """Record a rejected create/update."""
        self.collector.increment("rule_validation_failures", tags={"field": field})
