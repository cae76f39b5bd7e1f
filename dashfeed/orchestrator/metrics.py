"""Metrics collection for the aggregation layer."""

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock

from dashfeed.fetch.models import FetchErrorClass


# Module-level singleton state
_metrics_instance: "AggregationMetrics | None" = None
_metrics_lock: Lock = Lock()


@dataclass
class AggregationMetrics:
    """Thread-safe metrics for aggregation runs.

    Tracks runs, per-source failures by error class, and timing.
    Use get_instance() for singleton access.
    """

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    runs_total: int = 0
    sources_fulfilled_total: int = 0
    sources_rejected_total: int = 0
    failures_by_source_error: Counter[tuple[str, str]] = field(default_factory=Counter)
    last_duration_ms: float = 0.0

    @classmethod
    def get_instance(cls) -> "AggregationMetrics":
        """Get the singleton instance (thread-safe).

        Returns:
            The shared AggregationMetrics instance.
        """
        global _metrics_instance  # noqa: PLW0603
        if _metrics_instance is None:
            with _metrics_lock:
                if _metrics_instance is None:
                    _metrics_instance = cls()
        return _metrics_instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (for testing)."""
        global _metrics_instance  # noqa: PLW0603
        with _metrics_lock:
            _metrics_instance = None

    def record_run(self, fulfilled: int, rejected: int, duration_ms: float) -> None:
        """Record a completed aggregation.

        Args:
            fulfilled: Sources with a payload.
            rejected: Sources that failed.
            duration_ms: Wall time of the run in milliseconds.
        """
        with self._lock:
            self.runs_total += 1
            self.sources_fulfilled_total += fulfilled
            self.sources_rejected_total += rejected
            self.last_duration_ms = duration_ms

    def record_failure(self, source: str, error_class: FetchErrorClass) -> None:
        """Record a source failure.

        Args:
            source: Source name.
            error_class: Classification of the error.
        """
        with self._lock:
            self.failures_by_source_error[(source, error_class.value)] += 1

    def get_failures_total(self, source: str | None = None) -> int:
        """Get total failures.

        Args:
            source: Optional source to filter by.

        Returns:
            Failure count.
        """
        with self._lock:
            if source is None:
                return sum(self.failures_by_source_error.values())
            return sum(
                count
                for (name, _), count in self.failures_by_source_error.items()
                if name == source
            )

    def to_dict(self) -> dict[str, int | float | dict[str, int]]:
        """Convert metrics to dictionary.

        Returns:
            Dictionary of metric name to value.
        """
        with self._lock:
            return {
                "runs_total": self.runs_total,
                "sources_fulfilled_total": self.sources_fulfilled_total,
                "sources_rejected_total": self.sources_rejected_total,
                "failures_by_source_error": {
                    f"{source}:{error}": count
                    for (source, error), count in self.failures_by_source_error.items()
                },
                "last_duration_ms": self.last_duration_ms,
            }
