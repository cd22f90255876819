"""Metrics collector for wait outcomes, durations and open subscriptions."""

from collections import defaultdict
from typing import Any

WAITS_TOTAL = "chainwatch_waits_total"
WAIT_ERRORS_TOTAL = "chainwatch_wait_errors_total"
WAIT_DURATION_SECONDS = "chainwatch_wait_duration_seconds"
ACTIVE_WAITS = "chainwatch_active_waits"
ACTIVE_SUBSCRIPTIONS = "chainwatch_active_subscriptions"

# Outcomes that are not errors for alerting purposes
NON_ERROR_OUTCOMES = frozenset({"success", "cancelled", "unsupported"})


class MetricsCollector:
    """Collects counters, gauges and histograms, exported in Prometheus format."""

    def __init__(self):
        """Initialize metrics collector."""
        self._counters: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, list[float]]] = defaultdict(lambda: defaultdict(list))
        self._help_texts: dict[str, str] = {
            WAITS_TOTAL: "Completed waits by kind, mode and outcome",
            WAIT_ERRORS_TOTAL: "Waits that ended in an error (cancellation excluded)",
            WAIT_DURATION_SECONDS: "Wall-clock duration of waits",
            ACTIVE_WAITS: "Waits currently in progress",
            ACTIVE_SUBSCRIPTIONS: "Push subscriptions currently open",
        }
        self._default_buckets = [0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300]

    def _labels_key(self, labels: dict[str, str] | None) -> str:
        """Convert labels to a hashable key."""
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    def register_metric(self, name: str, help_text: str) -> None:
        """Register a metric with help text."""
        self._help_texts[name] = help_text

    def inc_counter(
        self,
        name: str,
        value: float = 1,
        labels: dict[str, str] | None = None,
    ) -> float:
        """Increment a counter.

        Returns:
            New counter value
        """
        key = self._labels_key(labels)
        self._counters[name][key] += value
        return self._counters[name][key]

    def inc_gauge(
        self,
        name: str,
        value: float = 1,
        labels: dict[str, str] | None = None,
    ) -> float:
        """Increment a gauge."""
        key = self._labels_key(labels)
        self._gauges[name][key] += value
        return self._gauges[name][key]

    def dec_gauge(
        self,
        name: str,
        value: float = 1,
        labels: dict[str, str] | None = None,
    ) -> float:
        """Decrement a gauge."""
        key = self._labels_key(labels)
        self._gauges[name][key] -= value
        return self._gauges[name][key]

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record a histogram observation."""
        key = self._labels_key(labels)
        self._histograms[name][key].append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Get counter value."""
        return self._counters[name][self._labels_key(labels)]

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Get gauge value."""
        return self._gauges[name][self._labels_key(labels)]

    def get_histogram_stats(
        self,
        name: str,
        labels: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Get histogram statistics."""
        values = self._histograms[name][self._labels_key(labels)]

        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}

        return {
            "count": len(values),
            "sum": sum(values),
            "min": min(values),
            "max": max(values),
            "avg": sum(values) / len(values),
        }

    def record_wait(self, kind: str, mode: str, outcome: str, duration: float) -> None:
        """Record the end of one wait.

        Args:
            kind: "confirmation" or "event"
            mode: Transport mode used
            outcome: "success", "cancelled" or the error class name
            duration: Seconds the wait took
        """
        labels = {"kind": kind, "mode": mode}
        self.inc_counter(WAITS_TOTAL, labels={**labels, "outcome": outcome})
        if outcome not in NON_ERROR_OUTCOMES:
            self.inc_counter(WAIT_ERRORS_TOTAL, labels={**labels, "error": outcome})
        self.observe_histogram(WAIT_DURATION_SECONDS, duration, labels=labels)

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus format."""
        lines = []

        for metric_type, store in (("counter", self._counters), ("gauge", self._gauges)):
            for name, values in store.items():
                if name in self._help_texts:
                    lines.append(f"# HELP {name} {self._help_texts[name]}")
                lines.append(f"# TYPE {name} {metric_type}")
                for key, value in values.items():
                    if key:
                        lines.append(f"{name}{{{key}}} {value}")
                    else:
                        lines.append(f"{name} {value}")

        for name, values in self._histograms.items():
            if name in self._help_texts:
                lines.append(f"# HELP {name} {self._help_texts[name]}")
            lines.append(f"# TYPE {name} histogram")
            for key, observations in values.items():
                if not observations:
                    continue
                prefix = f"{key}," if key else ""
                for le in self._default_buckets:
                    bucket_count = sum(1 for v in observations if v <= le)
                    lines.append(f'{name}_bucket{{{prefix}le="{le}"}} {bucket_count}')
                lines.append(f'{name}_bucket{{{prefix}le="+Inf"}} {len(observations)}')
                suffix = f"{{{key}}}" if key else ""
                lines.append(f"{name}_sum{suffix} {sum(observations)}")
                lines.append(f"{name}_count{suffix} {len(observations)}")

        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all metrics."""
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()
