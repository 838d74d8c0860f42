"""
Cache Configuration

Centralized configuration for the shared cache layer.

The cache holds every piece of cross-worker state the pipeline needs:
cost counters, alert guards, job uniqueness locks, provider circuit
breakers, the chat response cache and the content reuse buckets.
Without REDIS_URL everything stays in process memory.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by data type.

    Counters and alert guards do not use these: they expire at the end
    of their own day or month bucket.
    """

    # Chat completions keyed on {model, messages, temperature, max_tokens}
    AI_RESPONSE: timedelta = timedelta(hours=24)

    # Perplexity answers change slowly
    SEARCH_RESPONSE: timedelta = timedelta(days=7)

    # Content reuse buckets
    CONTENT: timedelta = timedelta(days=30)

    # Consecutive provider failures are forgotten after this window
    CIRCUIT_FAILURES: timedelta = timedelta(minutes=5)

    # Request counters per service
    REQUEST_COUNTER: timedelta = timedelta(hours=24)


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - REDIS_URL: Redis connection string (memory cache when unset)
    - CACHE_NAMESPACE: Key prefix
    - CACHE_ENABLED: Enable/disable the response cache
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "content_engine"
    ))

    # Global cache toggle (response caching only; counters always run)
    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")

    # Redis connection
    redis_url: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_URL"))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "20"
    )))
    redis_socket_timeout: float = 5.0
    redis_connect_timeout: float = 5.0

    # Circuit breaker around Redis itself
    circuit_breaker_enabled: bool = True
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 60

    # Lock settings for read-modify-write buckets
    lock_timeout: float = 10.0
    lock_blocking_timeout: float = 5.0

    @property
    def use_redis(self) -> bool:
        return bool(self.redis_url)


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
