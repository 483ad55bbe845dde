"""
High-level client for the content delivery and management APIs.

Every request flows through the same pipeline::

    cache lookup -> rate limit classification -> throttle queue -> transport
        -> server rate limit feedback -> relation resolution -> cache store
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Mapping, Optional

import structlog
from structlog.contextvars import bound_contextvars

from storyfetch import __version__
from storyfetch.cache import MemoryCacheProvider, NullCacheProvider, ResponseCache
from storyfetch.config import ClientConfig
from storyfetch.observability import increment
from storyfetch.pagination import PaginationOrchestrator
from storyfetch.protocols import (
    CacheProvider,
    ContentApiError,
    ContentResponse,
    RequestExecutor,
    TransportFailure,
    TransportResult,
)
from storyfetch.resolver import RelationResolver, inline_assets
from storyfetch.throttle import (
    MANAGEMENT_API_DEFAULT_RATE_LIMIT,
    RateLimitConfig,
    ThrottleQueueManager,
    classify_rate_limit,
    parse_rate_limit_headers,
)
from storyfetch.transport import ContentFetch

logger = structlog.get_logger(__name__)

TOO_MANY_REQUESTS = 429


def _is_cdn_url(url: str) -> bool:
    return "/cdn/" in url


def _request_id() -> str:
    return uuid.uuid4().hex[:12]


def _with_resolve_level(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Explicit relation resolution defaults to two levels deep."""
    query = dict(params or {})
    if query.get("resolve_relations"):
        query.setdefault("resolve_level", 2)
    return query


def _header_int(headers: Mapping[str, Any], name: str) -> Optional[int]:
    for key, value in headers.items():
        if key.lower() == name:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


class ContentClient:
    """
    Rate-governed client for a paginated content service.

    Args:
        config: Client configuration. Built from ``options`` (and the
            ``STORYFETCH_*`` environment) when omitted.
        executor: Raw request capability. Defaults to an aiohttp session.
        cache_provider: Custom cache store, used instead of ``config.cache.type``.
        **options: Overrides for individual configuration fields.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        executor: Optional[RequestExecutor] = None,
        cache_provider: Optional[CacheProvider] = None,
        **options: Any,
    ):
        if config is None:
            config = ClientConfig(**options)
        elif options:
            merged = config.model_dump()
            merged["response_interceptor"] = config.response_interceptor
            merged.update(options)
            config = ClientConfig.model_validate(merged)
        self.config = config

        self.access_token = config.access_token
        self.version = config.version
        self.max_retries = config.max_retries
        self.retries_delay = config.retries_delay

        self.rate_limit_config = RateLimitConfig(
            user_rate_limit=config.rate_limit,
            is_management_api=config.is_management_api,
        )
        self.transport = ContentFetch(
            base_url=config.base_url,
            headers=config.default_headers(__version__),
            timeout=config.timeout,
            response_interceptor=config.response_interceptor,
            executor=executor,
        )
        self.throttle = ThrottleQueueManager(self.transport.request, interval=config.throttle_interval)

        if cache_provider is None:
            cache_provider = NullCacheProvider() if config.cache.type == "none" else MemoryCacheProvider()
        self.cache = ResponseCache(cache_provider, clear=config.cache.clear)

        self.resolver = RelationResolver(self.get_stories, resolve_nested=config.resolve_nested_relations)

    async def __aenter__(self) -> ContentClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # --- Reads ---

    async def get(
        self,
        slug: str,
        params: Optional[Mapping[str, Any]] = None,
        fetch_options: Optional[Dict[str, Any]] = None,
    ) -> ContentResponse:
        url = f"/{slug.lstrip('/')}"
        with bound_contextvars(request_id=_request_id()):
            return await self._cache_response(url, self._query(url, params), fetch_options=fetch_options)

    async def get_all(
        self,
        slug: str,
        params: Optional[Mapping[str, Any]] = None,
        entity: Optional[str] = None,
        fetch_options: Optional[Dict[str, Any]] = None,
    ) -> List[Any]:
        """Fetch every page of a listing and return the concatenated ``entity`` items."""
        slug = slug[:-1] if slug.endswith("/") else slug
        url = f"/{slug.lstrip('/')}"
        entity = entity or url.rsplit("/", 1)[-1]

        async def make_request(path: str, page_params: Dict[str, Any]) -> ContentResponse:
            return await self._cache_response(path, page_params, fetch_options=fetch_options)

        orchestrator = PaginationOrchestrator(make_request)
        with bound_contextvars(request_id=_request_id()):
            return await orchestrator.fetch_all(url, self._query(url, params), entity)

    async def get_story(
        self,
        slug: str,
        params: Optional[Mapping[str, Any]] = None,
        fetch_options: Optional[Dict[str, Any]] = None,
    ) -> ContentResponse:
        return await self.get(f"cdn/stories/{slug.lstrip('/')}", _with_resolve_level(params), fetch_options)

    async def get_stories(
        self,
        params: Optional[Mapping[str, Any]] = None,
        fetch_options: Optional[Dict[str, Any]] = None,
    ) -> ContentResponse:
        return await self.get("cdn/stories", _with_resolve_level(params), fetch_options)

    # --- Writes ---

    async def post(
        self, slug: str, params: Optional[Mapping[str, Any]] = None, fetch_options: Optional[Dict[str, Any]] = None
    ) -> ContentResponse:
        return await self._write("post", slug, params, fetch_options)

    async def put(
        self, slug: str, params: Optional[Mapping[str, Any]] = None, fetch_options: Optional[Dict[str, Any]] = None
    ) -> ContentResponse:
        return await self._write("put", slug, params, fetch_options)

    async def delete(
        self, slug: str, params: Optional[Mapping[str, Any]] = None, fetch_options: Optional[Dict[str, Any]] = None
    ) -> ContentResponse:
        return await self._write("delete", slug, params, fetch_options)

    async def _write(
        self,
        method: str,
        slug: str,
        params: Optional[Mapping[str, Any]],
        fetch_options: Optional[Dict[str, Any]],
    ) -> ContentResponse:
        url = f"/{slug.lstrip('/')}"
        fallback = MANAGEMENT_API_DEFAULT_RATE_LIMIT if self.rate_limit_config.is_management_api else None
        ceiling = classify_rate_limit(None, None, self.rate_limit_config, fallback)
        with bound_contextvars(request_id=_request_id()):
            result = await self.throttle.execute(ceiling, method, url, dict(params or {}), fetch_options)
        return self._unwrap(result)

    # --- Pipeline ---

    def _query(self, url: str, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        query = dict(params or {})
        if _is_cdn_url(url):
            if not query.get("version"):
                query["version"] = self.version
            if not query.get("token"):
                query["token"] = self.access_token
            if not query.get("cv"):
                query["cv"] = self.cache.cache_version(query["token"])
        return query

    def _ceiling(self, url: str, params: Mapping[str, Any]) -> int:
        fallback = None
        if self.rate_limit_config.is_management_api and not _is_cdn_url(url):
            fallback = MANAGEMENT_API_DEFAULT_RATE_LIMIT
        return classify_rate_limit(url, params, self.rate_limit_config, fallback)

    async def _cache_response(
        self,
        url: str,
        params: Dict[str, Any],
        retries: int = 0,
        fetch_options: Optional[Dict[str, Any]] = None,
    ) -> ContentResponse:
        cacheable = self.cache.is_cacheable(url, params)
        cache_key = self.cache.key(url, params)
        if cacheable:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                increment("cache_hits_total")
                return cached

        try:
            result = await self.throttle.execute(self._ceiling(url, params), "get", url, params, fetch_options)
        except ContentApiError as e:
            if e.status == TOO_MANY_REQUESTS and retries < self.max_retries:
                logger.warning(
                    "Rate limited, retrying",
                    url=url,
                    attempt=retries + 1,
                    max_retries=self.max_retries,
                    delay=self.retries_delay,
                )
                await asyncio.sleep(self.retries_delay)
                return await self._cache_response(url, params, retries + 1, fetch_options)
            raise

        response = self._unwrap(result)
        self._apply_server_limits(response)

        data = response.data
        if isinstance(data, dict):
            if "story" in data or "stories" in data:
                await self.resolver.resolve_stories(data, params)
                if self.config.inline_assets:
                    inline_assets(data)
            await self.cache.observe_version(params.get("token"), data.get("cv"), params.get("version"))

        if cacheable:
            await self.cache.set(cache_key, response)
        return response

    def _apply_server_limits(self, response: ContentResponse) -> None:
        limits = parse_rate_limit_headers(response.headers)
        if limits is not None and limits.max is not None:
            if limits.max != self.rate_limit_config.server_headers_rate_limit:
                logger.debug("Server rate limit updated", limit=limits.max)
            self.rate_limit_config.server_headers_rate_limit = limits.max

        response.per_page = _header_int(response.headers, "per-page")
        response.total = _header_int(response.headers, "total")

    @staticmethod
    def _unwrap(result: TransportResult) -> ContentResponse:
        if isinstance(result, TransportFailure):
            raise ContentApiError(result.message)
        return result

    # --- Cache versions ---

    def cache_version(self, token: Optional[str] = None) -> int:
        return self.cache.cache_version(token or self.access_token)

    def cache_versions(self) -> Dict[str, int]:
        return self.cache.cache_versions()

    def set_cache_version(self, cv: int) -> None:
        self.cache.set_cache_version(self.access_token, cv)

    def clear_cache_version(self) -> None:
        self.cache.clear_cache_version(self.access_token)

    async def flush_cache(self) -> ContentClient:
        await self.cache.flush()
        self.clear_cache_version()
        return self

    # --- Lifecycle ---

    def get_token(self) -> Optional[str]:
        return self.access_token

    def abort_all(self) -> None:
        """Reject every queued request. Requests already in flight keep running."""
        self.throttle.abort_all()

    async def close(self) -> None:
        await self.transport.close()
