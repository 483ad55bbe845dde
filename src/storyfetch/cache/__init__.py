"""Response caching and content version tracking."""

from .response_cache import MemoryCacheProvider, NullCacheProvider, ResponseCache

__all__ = ["MemoryCacheProvider", "NullCacheProvider", "ResponseCache"]
