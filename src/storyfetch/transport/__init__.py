"""HTTP transport: URL composition, header injection and deadlines."""

from .http_client import AiohttpExecutor, ContentFetch

__all__ = ["AiohttpExecutor", "ContentFetch"]
