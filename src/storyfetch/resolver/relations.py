"""
Relation and link resolution for story trees.

A story's content may reference other stories by UUID, either through
relation fields (``component.field`` patterns requested via
``resolve_relations``) or through story links (``linktype == "story"``).
The resolver scans the tree, fetches the referenced stories in chunks and
substitutes stop-marked copies back into the tree.

Resolution runs in three steps:
1. Fetch: scan for identifiers level by level (``resolve_level``), fetching
   unknown ones in concurrent chunks through the throttled client.
2. Links: attach the linked story to every story link.
3. Substitute: replace relation identifiers with copies of their entities,
   deepest level first so nested relations are carried along.

Every inserted copy carries ``_stopResolving: True`` and is never descended
into again, so reference cycles terminate.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set

import structlog

from storyfetch.observability import increment
from storyfetch.protocols import STOP_MARKER, StoriesFetcher
from storyfetch.utils.query import chunk

logger = structlog.get_logger(__name__)

LINK_MODES = frozenset({"1", "story", "url", "link"})
FORWARDED_PARAMS = ("version", "language", "starts_with", "excluding_fields")


def parse_patterns(value: Any) -> Set[str]:
    """Turn ``resolve_relations`` (comma separated string or list) into a pattern set."""
    if not value:
        return set()
    items = value.split(",") if isinstance(value, str) else value
    return {str(item).strip() for item in items if str(item).strip()}


def wants_links(params: Mapping[str, Any]) -> bool:
    value = params.get("resolve_links")
    if value is None or value is False:
        return False
    return str(value) in LINK_MODES


def _stop_marked(entity: Mapping[str, Any]) -> Dict[str, Any]:
    clone = copy.deepcopy(dict(entity))
    clone[STOP_MARKER] = True
    return clone


def _is_block(node: Mapping[str, Any]) -> bool:
    return "component" in node and "_uid" in node


def _walk(node: Any) -> Iterator[Dict[str, Any]]:
    """Yield every dict in the tree, skipping stop-marked subtrees."""
    if isinstance(node, dict):
        if node.get(STOP_MARKER):
            return
        yield node
        for value in node.values():
            yield from _walk(value)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item)


def _dedupe(ids: Iterable[str], known: Mapping[str, Any]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in ids:
        if item and item not in known:
            seen.setdefault(item, None)
    return list(seen)


class RelationResolver:
    """Resolves relation fields and story links inside story responses."""

    def __init__(self, fetch_stories: StoriesFetcher, chunk_size: int = 50, resolve_nested: bool = True):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.fetch_stories = fetch_stories
        self.chunk_size = chunk_size
        self.resolve_nested = resolve_nested

    async def resolve_stories(self, data: Dict[str, Any], params: Mapping[str, Any]) -> None:
        """Resolve relations and links of ``data`` in place."""
        patterns = parse_patterns(params.get("resolve_relations"))
        links = wants_links(params)
        if not patterns and not links:
            return

        roots = self._roots(data)
        depth = max(1, int(params.get("resolve_level") or 1))

        relations: Dict[str, Dict[str, Any]] = {}
        levels: List[List[str]] = []
        if patterns:
            relations = {
                rel["uuid"]: copy.deepcopy(rel) for rel in data.get("rels") or [] if isinstance(rel, dict) and "uuid" in rel
            }
            levels = await self._fetch_relations(roots, patterns, relations, data.get("rel_uuids") or [], depth, params)

        if links:
            link_table = {
                link["uuid"]: link for link in data.get("links") or [] if isinstance(link, dict) and "uuid" in link
            }
            link_trees: List[Any] = [root.get("content") for root in roots]
            if self.resolve_nested:
                link_trees.extend(entity.get("content") for entity in relations.values())
            await self._fetch_links(link_trees, link_table, data.get("link_uuids") or [], params)
            for tree in link_trees:
                self._substitute_links(tree, link_table)

        if patterns:
            if self.resolve_nested:
                for level in reversed(levels):
                    for uuid in level:
                        self._substitute_relations(relations[uuid].get("content"), patterns, relations)
            for root in roots:
                self._substitute_relations(root.get("content"), patterns, relations)

        data.pop("rel_uuids", None)
        data.pop("link_uuids", None)

    @staticmethod
    def _roots(data: Mapping[str, Any]) -> List[Dict[str, Any]]:
        if isinstance(data.get("story"), dict):
            return [data["story"]]
        return [story for story in data.get("stories") or [] if isinstance(story, dict)]

    # --- Scanning ---

    @staticmethod
    def scan_relations(tree: Any, patterns: Set[str]) -> List[str]:
        """Identifiers held by relation fields matching ``patterns``, in tree order."""
        found: List[str] = []
        for node in _walk(tree):
            if not _is_block(node):
                continue
            component = node["component"]
            for field_name, value in node.items():
                if f"{component}.{field_name}" not in patterns:
                    continue
                if isinstance(value, str):
                    found.append(value)
                elif isinstance(value, list):
                    found.extend(item for item in value if isinstance(item, str))
        return found

    @staticmethod
    def _link_key(node: Mapping[str, Any]) -> Optional[str]:
        if node.get("linktype") != "story":
            return None
        key = node.get("id") if node.get("fieldtype") == "multilink" else node.get("uuid")
        return key if isinstance(key, str) and key else None

    @classmethod
    def scan_links(cls, tree: Any) -> List[str]:
        """Identifiers of story links in tree order."""
        return [key for key in (cls._link_key(node) for node in _walk(tree)) if key]

    # --- Fetching ---

    async def _fetch_relations(
        self,
        roots: Sequence[Dict[str, Any]],
        patterns: Set[str],
        table: Dict[str, Dict[str, Any]],
        rel_uuids: Sequence[str],
        depth: int,
        params: Mapping[str, Any],
    ) -> List[List[str]]:
        levels: List[List[str]] = []
        frontier: List[Any] = [root.get("content") for root in roots]
        referenced: List[str] = [uuid for uuid in rel_uuids if isinstance(uuid, str)]

        for level in range(depth):
            for tree in frontier:
                referenced.extend(self.scan_relations(tree, patterns))
            pending = _dedupe(referenced, table)
            if pending:
                await self._fetch_into(pending, table, params, kind="relation", level=level + 1)

            resolved = [uuid for uuid in _dedupe(referenced, {}) if uuid in table]
            if not resolved:
                break
            levels.append(resolved)
            frontier = [table[uuid].get("content") for uuid in resolved]
            referenced = []
        return levels

    async def _fetch_links(
        self,
        trees: Sequence[Any],
        table: Dict[str, Dict[str, Any]],
        link_uuids: Sequence[str],
        params: Mapping[str, Any],
    ) -> None:
        referenced: List[str] = [uuid for uuid in link_uuids if isinstance(uuid, str)]
        for tree in trees:
            referenced.extend(self.scan_links(tree))
        pending = _dedupe(referenced, table)
        if pending:
            await self._fetch_into(pending, table, params, kind="link", level=1)

    async def _fetch_into(
        self,
        uuids: List[str],
        table: Dict[str, Dict[str, Any]],
        params: Mapping[str, Any],
        *,
        kind: str,
        level: int,
    ) -> None:
        batches = chunk(uuids, self.chunk_size)
        logger.debug("Resolving references", kind=kind, level=level, ids=len(uuids), batches=len(batches))

        responses = await asyncio.gather(*(self.fetch_stories(self._lookup_params(batch, params)) for batch in batches))

        found = 0
        for response in responses:
            data = response.data if isinstance(response.data, dict) else {}
            for story in data.get("stories") or []:
                if isinstance(story, dict) and "uuid" in story:
                    table[story["uuid"]] = copy.deepcopy(story)
                    found += 1
        if found:
            increment("relations_resolved_total", found, labels={"kind": kind})

    def _lookup_params(self, batch: List[str], params: Mapping[str, Any]) -> Dict[str, Any]:
        lookup: Dict[str, Any] = {"per_page": self.chunk_size, "by_uuids": ",".join(batch)}
        for name in FORWARDED_PARAMS:
            if params.get(name) is not None:
                lookup[name] = params[name]
        return lookup

    # --- Substitution ---

    def _substitute_relations(self, tree: Any, patterns: Set[str], table: Mapping[str, Dict[str, Any]]) -> None:
        if isinstance(tree, list):
            for item in tree:
                self._substitute_relations(item, patterns, table)
            return
        if not isinstance(tree, dict) or tree.get(STOP_MARKER):
            return

        component = tree.get("component") if _is_block(tree) else None
        for field_name, value in list(tree.items()):
            if component is not None and f"{component}.{field_name}" in patterns:
                tree[field_name] = self._replace(value, table)
            else:
                self._substitute_relations(value, patterns, table)

    @staticmethod
    def _replace(value: Any, table: Mapping[str, Dict[str, Any]]) -> Any:
        if isinstance(value, str):
            return _stop_marked(table[value]) if value in table else value
        if isinstance(value, list):
            return [
                _stop_marked(table[item]) if isinstance(item, str) and item in table else item for item in value
            ]
        return value

    def _substitute_links(self, tree: Any, table: Mapping[str, Dict[str, Any]]) -> None:
        for node in _walk(tree):
            key = self._link_key(node)
            if key and key in table:
                node["story"] = _stop_marked(table[key])
