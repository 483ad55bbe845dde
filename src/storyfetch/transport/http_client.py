"""
HTTP transport for the content service.

Composes URLs against a base URL, injects headers, enforces a per-call
deadline and turns every outcome into either a `ContentResponse`, a
`TransportFailure` (network failure or timeout) or a raised
`ContentApiError` (HTTP error status).
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, Mapping, Optional

import aiohttp
import structlog

from storyfetch.observability import histogram, increment
from storyfetch.protocols import (
    TIMEOUT_MESSAGE,
    ContentApiError,
    ContentResponse,
    RawResponse,
    RequestExecutor,
    ResponseInterceptor,
    TransportFailure,
    TransportResult,
)
from storyfetch.utils.query import stringify_params

logger = structlog.get_logger(__name__)

_OK_STATUSES = range(200, 207)


class AiohttpExecutor:
    """Default request executor backed by a single aiohttp session."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def __call__(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        body: Optional[str] = None,
    ) -> RawResponse:
        session = await self._ensure_session()
        async with session.request(method.upper(), url, headers=dict(headers), data=body) as response:
            content = await response.read()
            return RawResponse(
                status=response.status,
                headers={key.lower(): value for key, value in response.headers.items()},
                body=content,
                reason=response.reason or "",
            )

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


class ContentFetch:
    """Executes one HTTP-shaped operation at a time against the content service."""

    def __init__(
        self,
        base_url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 0,
        response_interceptor: Optional[ResponseInterceptor] = None,
        executor: Optional[RequestExecutor] = None,
    ):
        self.base_url = base_url
        self.headers: Dict[str, str] = dict(headers or {})
        self.timeout = timeout
        self.response_interceptor = response_interceptor
        self.executor: RequestExecutor = executor or AiohttpExecutor()

    def compose_url(self, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        if params:
            query = stringify_params(params)
            if query:
                url = f"{url}?{query}"
        return url

    async def get(
        self, path: str, params: Optional[Mapping[str, Any]] = None, fetch_options: Optional[Dict[str, Any]] = None
    ) -> TransportResult:
        return await self.request("get", path, params, fetch_options)

    async def post(
        self, path: str, params: Optional[Mapping[str, Any]] = None, fetch_options: Optional[Dict[str, Any]] = None
    ) -> TransportResult:
        return await self.request("post", path, params, fetch_options)

    async def put(
        self, path: str, params: Optional[Mapping[str, Any]] = None, fetch_options: Optional[Dict[str, Any]] = None
    ) -> TransportResult:
        return await self.request("put", path, params, fetch_options)

    async def delete(
        self, path: str, params: Optional[Mapping[str, Any]] = None, fetch_options: Optional[Dict[str, Any]] = None
    ) -> TransportResult:
        return await self.request("delete", path, params, fetch_options)

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        fetch_options: Optional[Dict[str, Any]] = None,
    ) -> TransportResult:
        """
        Perform the request.

        Args:
            method: One of get, post, put, delete
            path: Path relative to the base URL
            params: Query parameters for get, JSON payload otherwise
            fetch_options: Optional ``headers`` merged over the defaults and
                ``timeout`` overriding the configured deadline

        Returns:
            `ContentResponse` on success, `TransportFailure` on network error or timeout

        Raises:
            ContentApiError: The service answered with an error status
        """
        fetch_options = fetch_options or {}
        headers = {**self.headers, **fetch_options.get("headers", {})}
        timeout = fetch_options.get("timeout", self.timeout)

        if method == "get":
            url = self.compose_url(path, params)
            body = None
        else:
            url = self.compose_url(path)
            body = json.dumps(dict(params or {}))

        start_time = time.monotonic()
        deadline = asyncio.timeout(timeout or None)
        try:
            async with deadline:
                raw = await self.executor(method, url, headers=headers, body=body)
        except Exception as e:
            if isinstance(e, TimeoutError) and deadline.expired():
                logger.warning("Request timed out", method=method, url=url, timeout=timeout)
                increment("requests_total", labels={"method": method, "status_class": "timeout"})
                return TransportFailure(message=TIMEOUT_MESSAGE)
            logger.warning("Request failed", method=method, url=url, error=str(e))
            increment("requests_total", labels={"method": method, "status_class": "error"})
            return TransportFailure(message=str(e))
        finally:
            histogram("request_latency_seconds", time.monotonic() - start_time)

        increment("requests_total", labels={"method": method, "status_class": f"{raw.status // 100}xx"})

        try:
            data = json.loads(raw.body) if raw.status != 204 and raw.body else {}
        except ValueError as e:
            logger.warning("Response body is not JSON", method=method, url=url, status=raw.status)
            return TransportFailure(message=str(e))

        response = ContentResponse(data=data, headers=dict(raw.headers), status=raw.status, status_text=raw.reason)
        if self.response_interceptor is not None:
            response = self.response_interceptor(response)
        return self._check_status(response)

    @staticmethod
    def _check_status(response: ContentResponse) -> ContentResponse:
        if response.status in _OK_STATUSES:
            return response

        data = response.data
        if isinstance(data, list):
            detail = data[0] if data else None
        elif isinstance(data, dict):
            detail = data.get("error") or data.get("slug")
        else:
            detail = data
        raise ContentApiError(message=response.status_text, status=response.status, response=detail)

    async def close(self) -> None:
        close = getattr(self.executor, "close", None)
        if close is not None:
            await close()
