from .executor import RecordedCall, ScriptedExecutor, json_response
from .metric_delta import metric_delta

__all__ = ["RecordedCall", "ScriptedExecutor", "json_response", "metric_delta"]
