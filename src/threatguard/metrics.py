"""Lightweight observability metrics for the conversation pipeline.

In-process collection only; each worker process keeps its own counters.
"""

import os
import threading
from dataclasses import dataclass, field
from typing import Any


@dataclass
class MetricsCollector:
    """In-memory metrics collector.

    Thread-safe; turns are async but the API may run in a threadpool.
    """

    # Counters keyed by intent type
    intent_counts: dict[str, int] = field(default_factory=dict)

    # Counters for turn outcomes (responded, awaiting_confirmation, executed, error)
    status_counts: dict[str, int] = field(default_factory=dict)

    # Counters for confirmation outcomes (confirmed, cancelled, expired, not_found)
    confirm_outcomes: dict[str, int] = field(default_factory=dict)

    # Counters for execution results keyed by command type, then success/failure
    execution_counts: dict[str, dict[str, int]] = field(default_factory=dict)

    # Turn latency samples in milliseconds
    turn_latencies: list[float] = field(default_factory=list)

    _lock: threading.Lock = field(default_factory=threading.Lock)

    def record_turn(self, intent: str, status: str, latency_ms: float) -> None:
        """Record one processed turn.

        Args:
            intent: Intent type value (e.g. "threat_scan")
            status: Turn outcome
            latency_ms: Wall-clock latency in milliseconds
        """
        with self._lock:
            self.intent_counts[intent] = self.intent_counts.get(intent, 0) + 1
            self.status_counts[status] = self.status_counts.get(status, 0) + 1
            self.turn_latencies.append(latency_ms)

    def record_confirmation(self, outcome: str) -> None:
        """Record a confirmation outcome."""
        with self._lock:
            self.confirm_outcomes[outcome] = self.confirm_outcomes.get(outcome, 0) + 1

    def record_execution(self, command_type: str, success: bool) -> None:
        """Record one execution attempt routed to a handler."""
        key = "success" if success else "failure"
        with self._lock:
            counts = self.execution_counts.setdefault(command_type, {})
            counts[key] = counts.get(key, 0) + 1

    def _calculate_percentile(self, sorted_values: list[float], percentile: float) -> float | None:
        """Calculate a percentile from sorted values.

        Args:
            sorted_values: List of values sorted in ascending order
            percentile: Percentile to calculate (0.0 to 1.0)

        Returns:
            The percentile value, or None if list is empty
        """
        if not sorted_values:
            return None

        n = len(sorted_values)
        idx = int(n * percentile)
        return sorted_values[min(idx, n - 1)]

    def get_snapshot(self) -> dict[str, Any]:
        """Get a snapshot of current metrics, including latency percentiles."""
        with self._lock:
            latency_p50 = None
            latency_p95 = None

            if self.turn_latencies:
                sorted_latencies = sorted(self.turn_latencies)
                latency_p50 = self._calculate_percentile(sorted_latencies, 0.5)
                latency_p95 = self._calculate_percentile(sorted_latencies, 0.95)

            return {
                "intent_counts": dict(self.intent_counts),
                "status_counts": dict(self.status_counts),
                "confirm_outcomes": dict(self.confirm_outcomes),
                "execution_counts": {
                    command_type: dict(counts)
                    for command_type, counts in self.execution_counts.items()
                },
                "turn_latency_ms": {
                    "p50": latency_p50,
                    "p95": latency_p95,
                    "count": len(self.turn_latencies),
                },
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.intent_counts.clear()
            self.status_counts.clear()
            self.confirm_outcomes.clear()
            self.execution_counts.clear()
            self.turn_latencies.clear()


_metrics_collector: MetricsCollector | None = None
_metrics_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector instance."""
    global _metrics_collector
    with _metrics_lock:
        if _metrics_collector is None:
            _metrics_collector = MetricsCollector()
        return _metrics_collector


def is_metrics_enabled() -> bool:
    """Check if metrics collection is enabled via environment variable.

    Returns:
        True if THREATGUARD_ENABLE_METRICS=true, False otherwise.
    """
    return os.getenv("THREATGUARD_ENABLE_METRICS", "false").lower() in ("true", "1", "yes")
