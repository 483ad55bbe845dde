"""
storyfetch - Rate-governed client for headless CMS content APIs.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .client import ContentClient
from .config import ClientConfig
from .protocols import ContentApiError, ContentResponse, ThrottleAbortedError, TransportFailure

__all__ = [
    "__version__",
    "ClientConfig",
    "ContentApiError",
    "ContentClient",
    "ContentResponse",
    "ThrottleAbortedError",
    "TransportFailure",
]
