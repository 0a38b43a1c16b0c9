"""
Observability metrics for monitoring and debugging.
Provides feed channel, payload and snapshot metrics.
"""

from fastapi import APIRouter, Response
from typing import Dict, List, Optional
import json


# Simple metrics tracking without Prometheus dependency
class SimpleMetrics:
    """Simple metrics tracking for observability."""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, List[float]] = {}

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return name
        return f"{name}_{json.dumps(labels, sort_keys=True)}"

    def inc_counter(self, name: str, labels: Optional[Dict[str, str]] = None, amount: int = 1):
        """Increment a counter."""
        key = self._key(name, labels)
        self.counters[key] = self.counters.get(key, 0) + amount

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Set a gauge value."""
        self.gauges[self._key(name, labels)] = value

    def observe_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Observe a histogram value."""
        key = self._key(name, labels)
        if key not in self.histograms:
            self.histograms[key] = []
        self.histograms[key].append(value)
        # Keep only last 1000 samples
        if len(self.histograms[key]) > 1000:
            self.histograms[key] = self.histograms[key][-1000:]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        return self.counters.get(self._key(name, labels), 0)

    def reset(self):
        self.counters.clear()
        self.gauges.clear()
        self.histograms.clear()

    def get_metrics(self) -> str:
        """Get metrics in text format."""
        lines = []
        for key, value in self.counters.items():
            lines.append(f"# TYPE {key.split('_{')[0]} counter")
            lines.append(f"{key} {value}")
        for key, value in self.gauges.items():
            lines.append(f"# TYPE {key.split('_{')[0]} gauge")
            lines.append(f"{key} {value}")
        for key, values in self.histograms.items():
            if values:
                lines.append(f"# TYPE {key.split('_{')[0]} histogram")
                lines.append(f"{key}_count {len(values)}")
                lines.append(f"{key}_sum {sum(values)}")
                lines.append(f"{key}_avg {sum(values)/len(values)}")
        return "\n".join(lines)


# Global metrics instance
_metrics = SimpleMetrics()

# Numeric encoding of channel states for the gauge
_STATE_LEVELS = {
    "idle": 0.0,
    "connecting": 1.0,
    "live": 2.0,
    "degraded": 3.0,
    "reconnecting": 4.0,
    "closed": 5.0,
}


def get_registry() -> SimpleMetrics:
    """Get the global metrics registry."""
    return _metrics


def record_channel_state(state: str):
    """Record the current channel state."""
    _metrics.set_gauge("feed_channel_state", _STATE_LEVELS.get(state, -1.0))


def record_connect_attempt(mode: str):
    """Record a connection attempt."""
    _metrics.inc_counter("feed_connect_attempts", {"mode": mode})


def record_reconnect(mode: str):
    """Record a scheduled reconnect."""
    _metrics.inc_counter("feed_reconnects", {"mode": mode})


def record_message(kind: str):
    """Record an inbound message by kind (data, pong, decode_error)."""
    _metrics.inc_counter("feed_messages", {"kind": kind})


def record_ping():
    """Record a heartbeat ping sent."""
    _metrics.inc_counter("feed_pings")


def record_no_data(reason: str):
    """Record a no-data outcome."""
    _metrics.inc_counter("feed_no_data", {"reason": reason})


def record_dropped_records(count: int):
    """Record records dropped for violating the record contract."""
    if count:
        _metrics.inc_counter("feed_dropped_records", amount=count)


def record_snapshot(record_count: int, flash_count: int, publish_ms: float):
    """Record a published snapshot and how long subscribers took to take it."""
    _metrics.inc_counter("feed_snapshots")
    _metrics.set_gauge("feed_records", float(record_count))
    _metrics.observe_histogram("feed_flashes", float(flash_count))
    _metrics.observe_histogram("feed_publish_ms", publish_ms)


def get_metrics() -> str:
    """Get metrics in text format."""
    return _metrics.get_metrics()


def create_metrics_router() -> APIRouter:
    """Create FastAPI router for metrics endpoint."""
    router = APIRouter()

    @router.get("/ops/metrics")
    def metrics():
        """Metrics endpoint."""
        return Response(get_metrics(), media_type="text/plain")

    return router
