"""
Process-lifetime cache for idempotent reads.

Entries are keyed by normalized path plus a stable serialization of the
parameters. Alongside the entries the cache remembers the last content
version (``cv``) observed per access token; a newer version flushes the whole
store when the clearing policy allows it.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Mapping, Optional

import structlog

from storyfetch.protocols import CacheProvider, ContentResponse
from storyfetch.utils.query import stable_key

logger = structlog.get_logger(__name__)

ClearPolicy = Literal["manual", "auto", "onpreview"]

# Paths whose responses describe the space itself and must stay fresh
UNCACHED_PATHS = frozenset({"/cdn/spaces/me"})


class MemoryCacheProvider:
    """In-memory provider. The default."""

    def __init__(self) -> None:
        self._store: Dict[str, ContentResponse] = {}

    async def get(self, key: str) -> Optional[ContentResponse]:
        return self._store.get(key)

    async def get_all(self) -> Dict[str, ContentResponse]:
        return dict(self._store)

    async def set(self, key: str, value: ContentResponse) -> None:
        self._store[key] = value

    async def flush(self) -> None:
        self._store.clear()


class NullCacheProvider:
    """Provider that never stores anything."""

    async def get(self, key: str) -> Optional[ContentResponse]:
        return None

    async def get_all(self) -> Dict[str, ContentResponse]:
        return {}

    async def set(self, key: str, value: ContentResponse) -> None:
        return None

    async def flush(self) -> None:
        return None


class ResponseCache:
    """Wraps a provider with key building, cache versions and the clearing policy."""

    def __init__(self, provider: Optional[CacheProvider] = None, clear: ClearPolicy = "manual"):
        self.provider: CacheProvider = provider if provider is not None else MemoryCacheProvider()
        self.clear = clear
        self._versions: Dict[str, int] = {}

    @staticmethod
    def key(path: str, params: Mapping[str, Any]) -> str:
        return stable_key(path, params)

    @staticmethod
    def is_cacheable(path: str, params: Mapping[str, Any]) -> bool:
        """Only published reads are cached."""
        return params.get("version") == "published" and "/" + path.strip("/") not in UNCACHED_PATHS

    async def get(self, key: str) -> Optional[ContentResponse]:
        return await self.provider.get(key)

    async def set(self, key: str, value: ContentResponse) -> None:
        await self.provider.set(key, value)

    async def flush(self) -> None:
        await self.provider.flush()
        logger.info("Response cache flushed")

    def cache_version(self, token: Optional[str]) -> int:
        return self._versions.get(token or "", 0)

    def cache_versions(self) -> Dict[str, int]:
        return dict(self._versions)

    def set_cache_version(self, token: Optional[str], version: int) -> None:
        self._versions[token or ""] = version

    def clear_cache_version(self, token: Optional[str]) -> None:
        self._versions[token or ""] = 0

    def should_clear(self, version: Optional[str]) -> bool:
        if self.clear == "auto":
            return True
        return self.clear == "onpreview" and version == "draft"

    async def observe_version(self, token: Optional[str], cv: Any, version: Optional[str]) -> bool:
        """
        Record the content version seen for ``token``.

        Returns True when the observation flushed the cache.
        """
        if not token or not cv:
            return False

        flushed = False
        known = self._versions.get(token)
        if self.should_clear(version) and known and known != cv:
            await self.flush()
            logger.info("Content version changed, cache invalidated", previous=known, current=cv)
            flushed = True
        self._versions[token] = cv
        return flushed
