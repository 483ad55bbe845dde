"""Inline asset metadata into asset fields."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple

from storyfetch.protocols import STOP_MARKER


def inline_assets(data: Dict[str, Any]) -> int:
    """
    Merge the response's ``assets`` list into every asset field of the story tree.

    Field values win over asset values. Returns the number of fields touched.
    """
    assets = {asset["id"]: asset for asset in data.get("assets") or [] if isinstance(asset, dict) and "id" in asset}
    if not assets:
        return 0

    roots = [data["story"]] if isinstance(data.get("story"), dict) else data.get("stories") or []
    return sum(_inline(root.get("content"), assets) for root in roots if isinstance(root, dict))


def _inline(node: Any, assets: Mapping[Any, Dict[str, Any]]) -> int:
    count = 0
    entries: Iterable[Tuple[Any, Any]]
    if isinstance(node, list):
        entries = enumerate(node)
    elif isinstance(node, dict) and not node.get(STOP_MARKER):
        entries = iter(list(node.items()))
    else:
        return 0

    for key, value in entries:
        if _is_asset(value, assets):
            node[key] = {**assets[value["id"]], **value}
            count += 1
        else:
            count += _inline(value, assets)
    return count


def _is_asset(value: Any, assets: Mapping[Any, Dict[str, Any]]) -> bool:
    return isinstance(value, dict) and value.get("fieldtype") == "asset" and value.get("id") in assets
