"""
Tests for the response cache and content version tracking.
"""

import pytest

from storyfetch.cache import MemoryCacheProvider, NullCacheProvider, ResponseCache
from storyfetch.protocols import ContentResponse


@pytest.mark.unit
class TestCacheKey:
    def test_key_ignores_parameter_order(self):
        first = ResponseCache.key("/cdn/stories", {"version": "published", "page": 1, "token": "t"})
        second = ResponseCache.key("cdn/stories/", {"token": "t", "page": 1, "version": "published"})
        assert first == second

    def test_key_distinguishes_values(self):
        assert ResponseCache.key("/cdn/stories", {"page": 1}) != ResponseCache.key("/cdn/stories", {"page": 2})

    @pytest.mark.parametrize(
        "path, params, expected",
        [
            ("/cdn/stories", {"version": "published"}, True),
            ("/cdn/stories", {"version": "draft"}, False),
            ("/cdn/spaces/me", {"version": "published"}, False),
            ("/spaces/1/stories", {}, False),
        ],
    )
    def test_cacheable(self, path, params, expected):
        assert ResponseCache.is_cacheable(path, params) is expected


@pytest.mark.unit
class TestProviders:
    @pytest.mark.asyncio
    async def test_memory_provider_roundtrip(self):
        provider = MemoryCacheProvider()
        response = ContentResponse(data={"story": {"id": 1}})

        await provider.set("k", response)

        assert await provider.get("k") is response
        assert await provider.get_all() == {"k": response}
        await provider.flush()
        assert await provider.get("k") is None

    @pytest.mark.asyncio
    async def test_null_provider_stores_nothing(self):
        provider = NullCacheProvider()
        await provider.set("k", ContentResponse(data={}))
        assert await provider.get("k") is None
        assert await provider.get_all() == {}


@pytest.mark.unit
class TestCacheVersions:
    def test_versions_are_per_token(self):
        cache = ResponseCache()
        assert cache.cache_version("a") == 0

        cache.set_cache_version("a", 100)
        cache.set_cache_version("b", 200)

        assert cache.cache_version("a") == 100
        assert cache.cache_versions() == {"a": 100, "b": 200}

        cache.clear_cache_version("a")
        assert cache.cache_version("a") == 0
        assert cache.cache_version("b") == 200

    @pytest.mark.parametrize(
        "policy, version, expected",
        [
            ("manual", "published", False),
            ("manual", "draft", False),
            ("auto", "published", True),
            ("onpreview", "draft", True),
            ("onpreview", "published", False),
        ],
    )
    def test_should_clear(self, policy, version, expected):
        assert ResponseCache(clear=policy).should_clear(version) is expected

    @pytest.mark.asyncio
    async def test_newer_version_flushes_under_auto(self):
        cache = ResponseCache(clear="auto")
        await cache.set("k", ContentResponse(data={}))

        assert await cache.observe_version("t", 100, "published") is False
        assert await cache.get("k") is not None

        assert await cache.observe_version("t", 200, "published") is True
        assert await cache.get("k") is None
        assert cache.cache_version("t") == 200

    @pytest.mark.asyncio
    async def test_manual_policy_records_without_flushing(self):
        cache = ResponseCache(clear="manual")
        await cache.set("k", ContentResponse(data={}))
        await cache.observe_version("t", 100, "published")

        assert await cache.observe_version("t", 200, "published") is False
        assert await cache.get("k") is not None
        assert cache.cache_version("t") == 200

    @pytest.mark.asyncio
    async def test_missing_token_or_version_is_ignored(self):
        cache = ResponseCache(clear="auto")
        assert await cache.observe_version(None, 100, "published") is False
        assert await cache.observe_version("t", None, "published") is False
        assert cache.cache_versions() == {}
