"""Query string and cache key serialization."""

from __future__ import annotations

import json
from typing import Any, List, Mapping, Optional, Sequence, Union
from urllib.parse import quote

# Same unreserved set as JavaScript's encodeURIComponent
_SAFE = "-_.!~*'()"


def _encode(value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return quote(str(value), safe=_SAFE)


def stringify_params(
    params: Union[Mapping[str, Any], Sequence[Any]],
    prefix: Optional[str] = None,
    is_array: bool = False,
) -> str:
    """
    Serialize parameters with bracket notation.

    ``{"a": [1, 2], "f": {"x": {"in": "y"}}}`` becomes
    ``a%5B%5D=1&a%5B%5D=2&f%5Bx%5D%5Bin%5D=y``. ``None`` values are skipped.
    """
    items = enumerate(params) if is_array else params.items()  # type: ignore[union-attr]
    pairs: List[str] = []
    for key, value in items:
        if value is None:
            continue
        encoded_key = "" if is_array else quote(str(key), safe=_SAFE)
        name = prefix + quote(f"[{encoded_key}]", safe=_SAFE) if prefix else encoded_key
        if isinstance(value, Mapping):
            pair = stringify_params(value, name)
        elif isinstance(value, (list, tuple)):
            pair = stringify_params(value, name, is_array=True)
        else:
            pair = f"{name}={_encode(value)}"
        if pair:
            pairs.append(pair)
    return "&".join(pairs)


def stable_key(path: str, params: Mapping[str, Any]) -> str:
    """Cache key independent of parameter insertion order."""
    normalized = "/" + path.strip("/")
    return json.dumps({"url": normalized, "params": params}, sort_keys=True, separators=(",", ":"), default=str)


def chunk(items: Sequence[Any], size: int) -> List[List[Any]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
