"""
Defines Prometheus metrics for the client.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Several clients in one process (and module reloads in the test suite) must
# share collectors instead of failing on duplicate registration.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "requests_total": Counter(
            "storyfetch_requests_total",
            "Total number of transport calls by method and status class",
            ["method", "status_class"],
        ),
        "request_latency_seconds": Histogram(
            "storyfetch_request_latency_seconds",
            "Time spent inside the transport for one call",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
        ),
        "cache_hits_total": Counter(
            "storyfetch_cache_hits_total",
            "Number of reads answered from the response cache",
        ),
        "throttle_pending": Gauge(
            "storyfetch_throttle_pending",
            "Requests waiting for admission, per rate limit ceiling",
            ["ceiling"],
        ),
        "relations_resolved_total": Counter(
            "storyfetch_relations_resolved_total",
            "Number of relation and link identifiers resolved to entities",
            ["kind"],
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


def start_metrics_server(port: Optional[int]) -> bool:
    """Expose the default registry over HTTP. Returns whether a server was started."""
    if not port:
        return False
    start_http_server(port)
    return True
