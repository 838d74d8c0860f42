"""
Shared Cache Layer

Cross-worker state for the pipeline:
- Cost counters (day / month / service-day), incremented atomically
- Budget alert guards (set-if-absent, expire at end of day)
- Job uniqueness locks
- AI provider circuit breakers
- Chat response cache
- Content reuse buckets (ContentCache)

Usage:
    cache = await get_cache_backend()
    await cache.incrbyfloat(cache.make_key("ai_costs", "total", "2025-01-15"), 0.12)

    content_cache = ContentCache(cache)
    result = await content_cache.get_cached_or_generate(keyword, "fr", "FR", generate)
"""

from src.cache.config import CacheConfig, CacheTTL, get_cache_config
from src.cache.backend import CacheBackend, MemoryCache
from src.cache.redis_cache import RedisCache, get_cache_backend, close_cache_backend
from src.cache.content_cache import (
    ContentCache,
    CachedResult,
    normalize_keyword,
    similarity,
    SIMILARITY_THRESHOLD,
    MAX_ENTRIES_PER_BUCKET,
)

__all__ = [
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Backends
    "CacheBackend",
    "MemoryCache",
    "RedisCache",
    "get_cache_backend",
    "close_cache_backend",
    # Content reuse
    "ContentCache",
    "CachedResult",
    "normalize_keyword",
    "similarity",
    "SIMILARITY_THRESHOLD",
    "MAX_ENTRIES_PER_BUCKET",
]
