"""
Rate limit classification.

Maps a request (path, parameters, client configuration and server feedback)
to a requests-per-second ceiling. Everything here is pure: no I/O, no state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

DEFAULT_PER_PAGE = 25
MAX_RATE_LIMIT = 1000
MANAGEMENT_API_DEFAULT_RATE_LIMIT = 3

# Ceilings enforced by the delivery API, keyed by the largest per_page they cover
SINGLE_OR_SMALL = 50
MEDIUM = 15
LARGE = 10
VERY_LARGE = 6

PER_PAGE_TIERS = (
    (25, SINGLE_OR_SMALL),
    (50, MEDIUM),
    (75, LARGE),
)

_REMAINING_RE = re.compile(r"r=(\d+)")
_MAX_RE = re.compile(r"q=(\d+)")


@dataclass
class RateLimitConfig:
    """Rate limit inputs that live for the lifetime of a client."""

    user_rate_limit: Optional[int] = None
    server_headers_rate_limit: Optional[int] = None
    is_management_api: bool = False


@dataclass
class RateLimitHeaders:
    remaining: Optional[int] = None
    max: Optional[int] = None


def is_single_story_request(url: str, params: Mapping[str, Any]) -> bool:
    """Single story lookups address one entity by path or carry ``find_by``."""
    if "find_by" in params:
        return True
    segments = url.strip("/").split("/")
    return len(segments) > 2 and segments[:2] == ["cdn", "stories"] and segments[-1] != ""


def tier_for_per_page(per_page: int) -> int:
    for upper_bound, ceiling in PER_PAGE_TIERS:
        if per_page <= upper_bound:
            return ceiling
    return VERY_LARGE


def classify_rate_limit(
    url: Optional[str],
    params: Optional[Mapping[str, Any]],
    config: Optional[RateLimitConfig] = None,
    fallback_default: Optional[int] = None,
) -> int:
    """
    Determine the requests-per-second ceiling for a request.

    Precedence: user override, then server headers, then the supplied
    fallback (management API), then the tier derived from the request shape.
    User and server values are capped at ``MAX_RATE_LIMIT``; the fallback is
    returned unchanged.

    Args:
        url: Request path, e.g. ``/cdn/stories``
        params: Query parameters of the request
        config: Client-level rate limit state
        fallback_default: Ceiling used instead of tier computation

    Returns:
        Integer ceiling in requests per interval
    """
    config = config or RateLimitConfig()

    if config.user_rate_limit is not None:
        return min(config.user_rate_limit, MAX_RATE_LIMIT)

    if config.server_headers_rate_limit is not None:
        return min(config.server_headers_rate_limit, MAX_RATE_LIMIT)

    if fallback_default is not None:
        return fallback_default

    if not url or params is None:
        return SINGLE_OR_SMALL

    if is_single_story_request(url, params):
        return SINGLE_OR_SMALL

    try:
        per_page = int(params.get("per_page") or DEFAULT_PER_PAGE)
    except (TypeError, ValueError):
        per_page = DEFAULT_PER_PAGE
    return tier_for_per_page(per_page)


def _header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return str(value)
    return None


def parse_rate_limit_headers(headers: Optional[Mapping[str, Any]]) -> Optional[RateLimitHeaders]:
    """
    Parse the ``X-RateLimit`` and ``X-RateLimit-Policy`` response headers.

    Example headers::

        X-RateLimit: "concurrent-requests";r=29
        X-RateLimit-Policy: "concurrent-requests";q=30

    Returns ``None`` when neither header yields a value.
    """
    if not headers:
        return None

    rate_limit = _header(headers, "x-ratelimit")
    policy = _header(headers, "x-ratelimit-policy")
    if rate_limit is None and policy is None:
        return None

    result = RateLimitHeaders()
    if rate_limit:
        match = _REMAINING_RE.search(rate_limit)
        if match:
            result.remaining = int(match.group(1))
    if policy:
        match = _MAX_RE.search(policy)
        if match:
            result.max = int(match.group(1))

    if result.remaining is None and result.max is None:
        return None
    return result
