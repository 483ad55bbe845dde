"""
Rate limit classification and per-tier throttle queues.
"""

from .queue import ThrottleQueue, ThrottleQueueManager
from .rate_limit import (
    DEFAULT_PER_PAGE,
    MANAGEMENT_API_DEFAULT_RATE_LIMIT,
    MAX_RATE_LIMIT,
    RateLimitConfig,
    RateLimitHeaders,
    classify_rate_limit,
    parse_rate_limit_headers,
)

__all__ = [
    "DEFAULT_PER_PAGE",
    "MANAGEMENT_API_DEFAULT_RATE_LIMIT",
    "MAX_RATE_LIMIT",
    "RateLimitConfig",
    "RateLimitHeaders",
    "ThrottleQueue",
    "ThrottleQueueManager",
    "classify_rate_limit",
    "parse_rate_limit_headers",
]
