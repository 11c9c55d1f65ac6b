"""
Prometheus metrics for persistent roots.

Organized into: dirty signals, flushes, scheduler state.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class PersistMetrics:
    """Metrics shared by all roots, labelled by path."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self._registry = reg

        # === Dirty Signals ===
        self.marks = Counter(
            'livepersist_marks_total',
            'Dirty signals raised by tracked mutations',
            labelnames=['path'],
            registry=reg
        )
        self.coalesced = Counter(
            'livepersist_coalesced_total',
            'Dirty signals absorbed by an already scheduled flush',
            labelnames=['path'],
            registry=reg
        )

        # === Flushes ===
        self.flushes = Counter(
            'livepersist_flushes_total',
            'Flush attempts by outcome',
            labelnames=['path', 'outcome'],
            registry=reg
        )
        self.flush_latency_ms = Histogram(
            'livepersist_flush_latency_ms',
            'Encode + write duration (milliseconds)',
            labelnames=['path'],
            buckets=[1, 5, 10, 25, 50, 100, 250, 1000],
            registry=reg
        )
        self.flush_bytes = Gauge(
            'livepersist_flush_bytes',
            'Size of the last written blob (bytes)',
            labelnames=['path'],
            registry=reg
        )

        # === Scheduler ===
        self.state = Gauge(
            'livepersist_state',
            'Scheduler state (0=idle, 1=scheduled, 2=saving, 3=saving_dirty)',
            labelnames=['path'],
            registry=reg
        )

    def get_registry(self) -> CollectorRegistry:
        return self._registry


_default: Optional[PersistMetrics] = None


def default_metrics() -> PersistMetrics:
    """Process-wide metrics instance used when a root is not given one."""
    global _default
    if _default is None:
        _default = PersistMetrics()
    return _default
