"""Prometheus counters exposed by the deadman watchdog."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter


class WatchdogMetrics:
    """Monotonic counters incremented by the state machine."""

    def __init__(self, registry: CollectorRegistry | None = None):
        registry = registry if registry is not None else REGISTRY
        self.registry = registry
        self.ticks_total = Counter(
            "deadman_ticks_total",
            "The total ticks passed in this snitch",
            registry=registry,
        )
        self.ticks_notified = Counter(
            "deadman_ticks_notified",
            "The number of ticks where notifications were sent.",
            registry=registry,
        )
        self.notifications_failed = Counter(
            "deadman_notifications_failed",
            "The number of failed notifications.",
            registry=registry,
        )

    def snapshot(self) -> dict[str, float]:
        return {
            key: self.registry.get_sample_value(name) or 0.0
            for key, name in (
                ("ticks_total", "deadman_ticks_total"),
                ("notifications_attempted", "deadman_ticks_notified_total"),
                ("notifications_failed", "deadman_notifications_failed_total"),
            )
        }


_default_metrics: WatchdogMetrics | None = None


def get_default_metrics() -> WatchdogMetrics:
    """Return the process-wide counters, registering them on first use."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = WatchdogMetrics()
    return _default_metrics
