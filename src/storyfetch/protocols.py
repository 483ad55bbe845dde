"""
Core contracts and dataclasses shared across storyfetch.

Architecture Overview:
- Transport results are plain dataclasses so callers can pattern-match on
  success (`ContentResponse`) versus network failure (`TransportFailure`)
- HTTP error statuses and client-level failures are raised as `ContentApiError`
- Pending throttled work rejected by an abort raises `ThrottleAbortedError`
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Union

# ============================================================================
# Constants
# ============================================================================

STOP_MARKER = "_stopResolving"
TIMEOUT_MESSAGE = "Request timeout: The request was aborted due to timeout"


# ============================================================================
# Transport Results
# ============================================================================


@dataclass
class RawResponse:
    """What a request executor hands back before any decoding."""

    status: int
    headers: Dict[str, str]
    body: bytes
    reason: str = ""


@dataclass
class ContentResponse:
    """Decoded response from the content service."""

    data: Any
    headers: Dict[str, str] = field(default_factory=dict)
    status: int = 200
    status_text: str = ""
    per_page: Optional[int] = None
    total: Optional[int] = None


@dataclass
class TransportFailure:
    """Network-level failure. Carries only a message."""

    message: str


TransportResult = Union[ContentResponse, TransportFailure]


# ============================================================================
# Errors
# ============================================================================


class ContentApiError(Exception):
    """Raised for HTTP error statuses and failed client operations."""

    def __init__(self, message: str, status: Optional[int] = None, response: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.response = response

    def __repr__(self) -> str:
        return f"ContentApiError(message={self.message!r}, status={self.status!r})"


class ThrottleAbortedError(Exception):
    """Raised for throttled work that was still pending when its queue was aborted."""


# ============================================================================
# Protocols
# ============================================================================


class RequestExecutor(Protocol):
    """Raw request-execution capability used by the transport."""

    async def __call__(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        body: Optional[str] = None,
    ) -> RawResponse: ...


class CacheProvider(Protocol):
    """Keyed store for cached read responses."""

    async def get(self, key: str) -> Optional[ContentResponse]: ...

    async def get_all(self) -> Dict[str, ContentResponse]: ...

    async def set(self, key: str, value: ContentResponse) -> None: ...

    async def flush(self) -> None: ...


ResponseInterceptor = Callable[[ContentResponse], ContentResponse]
StoriesFetcher = Callable[[Dict[str, Any]], Awaitable[ContentResponse]]
