"""
Redis Cache Implementation

Shared cache backend for multi-worker deployments:
- INCRBYFLOAT counters with EXPIREAT for cost accounting
- SET NX for alert guards and job uniqueness locks
- Hashes plus redis-py locks for content reuse buckets
- Circuit breaker so a Redis outage fails fast

Every operation degrades instead of raising: reads return None or an
empty value, writes return False, add() returns None. Callers such as
the cost ledger fall back to their durable store.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError, LockError, WatchError

from src.cache.backend import CacheBackend, MemoryCache, TTL, ttl_seconds, serialize_value, deserialize_value
from src.cache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)

_UNAVAILABLE = object()


class RedisCircuitBreaker:
    """
    Opens after `threshold` consecutive Redis errors and stays open for
    `timeout` seconds; the first call after that goes through again.
    """

    def __init__(self, threshold: int = 5, timeout: int = 60):
        self.threshold = threshold
        self.timeout = timeout
        self.failures = 0
        self.opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        if self.opened_at is None:
            return False
        if time.monotonic() - self.opened_at >= self.timeout:
            self.opened_at = None
            self.failures = 0
            logger.info("Redis circuit breaker closed, allowing requests")
            return False
        return True

    def record_success(self):
        self.failures = 0

    def record_failure(self):
        self.failures += 1
        if self.failures >= self.threshold and self.opened_at is None:
            self.opened_at = time.monotonic()
            logger.warning(
                f"Redis circuit breaker opened after {self.failures} failures. "
                f"Will retry in {self.timeout} seconds."
            )


class RedisCache(CacheBackend):
    """Redis implementation of CacheBackend."""

    def __init__(self, config: Optional[CacheConfig] = None):
        self.config = config or get_cache_config()
        self.namespace = self.config.namespace
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None
        self._breaker = RedisCircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        ) if self.config.circuit_breaker_enabled else None
        self._initialized = False
        self._lock = asyncio.Lock()
        self.errors = 0

    async def initialize(self):
        """Open the connection pool and ping once."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=True,
                )
                self._redis = Redis(connection_pool=self._pool)
                await self._redis.ping()
                self._initialized = True
                logger.info(f"Redis cache initialized: {self.config.redis_url}")
            except Exception as e:
                logger.error(f"Failed to initialize Redis: {e}")
                self._initialized = False
                raise

    async def close(self):
        if self._redis:
            await self._redis.aclose()
        if self._pool:
            await self._pool.disconnect()
        self._initialized = False
        logger.info("Redis cache closed")

    async def _call(self, operation: str, key: str, command, fallback: Any = None) -> Any:
        """
        Run one Redis command through the circuit breaker.

        Args:
            operation: Name used in logs
            key: Key the command touches
            command: Coroutine function taking the Redis client
            fallback: Value returned when Redis cannot answer
        """
        if self._breaker is not None and self._breaker.is_open:
            self.errors += 1
            return fallback

        try:
            if not self._initialized:
                await self.initialize()
            result = await command(self._redis)
        except (RedisError, OSError) as e:
            self.errors += 1
            if self._breaker is not None:
                self._breaker.record_failure()
            level = logging.WARNING if isinstance(e, RedisConnectionError) else logging.ERROR
            logger.log(level, f"Cache {operation} error for {key}: {e}")
            return fallback

        if self._breaker is not None:
            self._breaker.record_success()
        return result

    @staticmethod
    def _expiry_args(ttl: TTL, expire_at: Optional[datetime]) -> Dict[str, int]:
        if expire_at is not None:
            return {"exat": int(expire_at.timestamp())}
        if ttl is not None:
            return {"ex": max(1, int(ttl_seconds(ttl)))}
        return {}

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        data = await self._call("get", key, lambda r: r.get(key))
        return deserialize_value(data) if data is not None else None

    async def set(self, key: str, value: Any, ttl: TTL = None, expire_at: Optional[datetime] = None) -> bool:
        payload = serialize_value(value)
        expiry = self._expiry_args(ttl, expire_at)
        result = await self._call("set", key, lambda r: r.set(key, payload, **expiry), fallback=False)
        return bool(result)

    async def add(self, key: str, value: Any, ttl: TTL = None, expire_at: Optional[datetime] = None) -> Optional[bool]:
        payload = serialize_value(value)
        expiry = self._expiry_args(ttl, expire_at)
        result = await self._call("add", key, lambda r: r.set(key, payload, nx=True, **expiry), fallback=_UNAVAILABLE)
        if result is _UNAVAILABLE:
            return None
        # SET NX answers None when the key already exists
        return bool(result)

    async def delete(self, key: str) -> bool:
        result = await self._call("delete", key, lambda r: r.delete(key), fallback=None)
        return result is not None

    async def exists(self, key: str) -> bool:
        return bool(await self._call("exists", key, lambda r: r.exists(key), fallback=0))

    async def _swap_if(self, key: str, expected: Any, apply) -> Optional[bool]:
        """WATCH the key, compare, then run ``apply`` inside MULTI/EXEC."""
        expected_payload = serialize_value(expected)

        async def command(r: Redis):
            async with r.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if await pipe.get(key) != expected_payload:
                        # Leaving the block resets the pipeline and unwatches
                        return False
                    pipe.multi()
                    apply(pipe)
                    await pipe.execute()
                    return True
                except WatchError:
                    # Another client wrote the key between GET and EXEC
                    return False

        result = await self._call("compare", key, command, fallback=_UNAVAILABLE)
        return None if result is _UNAVAILABLE else result

    async def compare_and_set(self, key: str, expected: Any, value: Any, ttl: TTL = None) -> Optional[bool]:
        payload = serialize_value(value)
        expiry = self._expiry_args(ttl, None)
        return await self._swap_if(key, expected, lambda pipe: pipe.set(key, payload, **expiry))

    async def compare_and_delete(self, key: str, expected: Any) -> Optional[bool]:
        return await self._swap_if(key, expected, lambda pipe: pipe.delete(key))

    # =========================================================================
    # Counters
    # =========================================================================

    async def incr(self, key: str, amount: int = 1, ttl: TTL = None) -> Optional[int]:
        async def command(r: Redis):
            async with r.pipeline(transaction=True) as pipe:
                pipe.incrby(key, amount)
                if ttl is not None:
                    pipe.expire(key, max(1, int(ttl_seconds(ttl))))
                return await pipe.execute()

        results = await self._call("incr", key, command)
        return int(results[0]) if results else None

    async def incrbyfloat(self, key: str, amount: float, expire_at: Optional[datetime] = None) -> Optional[float]:
        async def command(r: Redis):
            async with r.pipeline(transaction=True) as pipe:
                pipe.incrbyfloat(key, amount)
                if expire_at is not None:
                    pipe.expireat(key, int(expire_at.timestamp()))
                return await pipe.execute()

        results = await self._call("incrbyfloat", key, command)
        return float(results[0]) if results else None

    async def get_float(self, key: str) -> Optional[float]:
        data = await self._call("get_float", key, lambda r: r.get(key))
        try:
            return float(data) if data is not None else None
        except (TypeError, ValueError):
            logger.warning(f"Counter {key} holds a non-numeric value")
            return None

    # =========================================================================
    # Hashes (content buckets)
    # =========================================================================

    async def hgetall(self, key: str) -> Dict[str, Any]:
        data = await self._call("hgetall", key, lambda r: r.hgetall(key), fallback={})
        return {f: deserialize_value(v) for f, v in data.items()}

    async def hset(self, key: str, field: str, value: Any, ttl: TTL = None) -> bool:
        async def command(r: Redis):
            async with r.pipeline(transaction=True) as pipe:
                pipe.hset(key, field, serialize_value(value))
                if ttl is not None:
                    pipe.expire(key, max(1, int(ttl_seconds(ttl))))
                await pipe.execute()
            return True

        return await self._call("hset", key, command, fallback=False)

    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        return await self._call("hdel", key, lambda r: r.hdel(key, *fields), fallback=0)

    # =========================================================================
    # Locks
    # =========================================================================

    @asynccontextmanager
    async def lock(self, name: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """
        Distributed lock via redis-py's Lock.

        If Redis is unreachable the section runs unlocked; the content
        buckets tolerate a duplicated or extra-evicted entry.
        """
        redis_lock = None
        try:
            if not self._initialized:
                await self.initialize()
            redis_lock = self._redis.lock(
                name,
                timeout=timeout or self.config.lock_timeout,
                blocking_timeout=self.config.lock_blocking_timeout,
            )
            if not await redis_lock.acquire():
                logger.warning(f"Could not acquire lock {name}, continuing unlocked")
                redis_lock = None
        except (RedisError, OSError) as e:
            logger.warning(f"Lock {name} unavailable ({e}), continuing unlocked")
            redis_lock = None

        try:
            yield
        finally:
            if redis_lock is not None:
                try:
                    await redis_lock.release()
                except LockError as e:
                    logger.warning(f"Lock {name} expired before release: {e}")


# Singleton instance
_cache_backend: Optional[CacheBackend] = None


async def get_cache_backend(config: Optional[CacheConfig] = None) -> CacheBackend:
    """
    Get the singleton cache backend.

    Redis when REDIS_URL is configured, in-process memory otherwise.
    """
    global _cache_backend

    if _cache_backend is None:
        config = config or get_cache_config()
        if config.use_redis:
            cache = RedisCache(config)
            await cache.initialize()
            _cache_backend = cache
        else:
            logger.warning("REDIS_URL not set - using in-process memory cache")
            _cache_backend = MemoryCache(namespace=config.namespace)
    return _cache_backend


async def close_cache_backend():
    """Close singleton cache backend."""
    global _cache_backend

    if _cache_backend:
        await _cache_backend.close()
        _cache_backend = None
