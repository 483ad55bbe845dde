"""
Helpers for validating metric value changes during tests.
"""

from contextlib import contextmanager
from typing import Any, Dict, Optional


def _sample(metric: Any, labels: Optional[Dict[str, str]] = None) -> float:
    child = metric.labels(**labels) if labels else metric
    if not hasattr(child, "_value"):
        raise ValueError(f"Metric {metric} doesn't have a _value attribute")
    return child._value.get()


@contextmanager
def metric_delta(metric, expected_delta=1, labels=None):
    """
    Context manager asserting that a counter or gauge changed by ``expected_delta``.

    Usage:
        with metric_delta(METRICS["cache_hits_total"]):
            await client.get("cdn/stories/home")
    """
    initial_value = _sample(metric, labels)

    yield

    actual_delta = _sample(metric, labels) - initial_value
    if actual_delta != expected_delta:
        raise AssertionError(
            f"Metric {metric} changed by {actual_delta}, expected {expected_delta} (labels={labels})"
        )
