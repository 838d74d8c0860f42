"""
Cache Backend Interface

Shared state store used by the ledger, governor, gateway, content cache
and job orchestrator. Two implementations:

- MemoryCache: in-process, asyncio-safe. Single worker and tests.
- RedisCache: shared across workers (see redis_cache.py).

Values must be JSON serializable. Counters are stored as plain numbers
so they can be incremented atomically.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)

TTL = Optional[Union[int, float, timedelta]]


def ttl_seconds(ttl: TTL) -> Optional[float]:
    """Normalize a TTL to seconds."""
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


def serialize_value(value: Any) -> str:
    return json.dumps(value, default=str)


def deserialize_value(data: Union[str, bytes, None]) -> Any:
    if data is None:
        return None
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return json.loads(data)


class CacheBackend(ABC):
    """Async key/value store with atomic counters, set-if-absent and locks."""

    namespace: str = "content_engine"

    def make_key(self, *parts: Any) -> str:
        """Create namespaced cache key."""
        return f"{self.namespace}:{':'.join(str(p) for p in parts)}"

    # =========================================================================
    # Core Operations
    # =========================================================================

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: TTL = None, expire_at: Optional[datetime] = None) -> bool:
        ...

    @abstractmethod
    async def add(self, key: str, value: Any, ttl: TTL = None, expire_at: Optional[datetime] = None) -> Optional[bool]:
        """
        Set only if the key does not exist (atomic).

        Returns True when written, False when the key already existed,
        None when the backend could not answer.
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def compare_and_set(self, key: str, expected: Any, value: Any, ttl: TTL = None) -> Optional[bool]:
        """
        Replace the value only while it still equals ``expected`` (atomic).

        Returns True when swapped, False when the value changed,
        None when the backend could not answer.
        """

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: Any) -> Optional[bool]:
        """Delete the key only while it still holds ``expected`` (atomic)."""

    # =========================================================================
    # Counters
    # =========================================================================

    @abstractmethod
    async def incr(self, key: str, amount: int = 1, ttl: TTL = None) -> Optional[int]:
        ...

    @abstractmethod
    async def incrbyfloat(self, key: str, amount: float, expire_at: Optional[datetime] = None) -> Optional[float]:
        """Atomically add to a float counter. None on backend failure."""

    @abstractmethod
    async def get_float(self, key: str) -> Optional[float]:
        """Read a counter. None when missing or unreadable."""

    # =========================================================================
    # Hashes (content buckets)
    # =========================================================================

    @abstractmethod
    async def hgetall(self, key: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def hset(self, key: str, field: str, value: Any, ttl: TTL = None) -> bool:
        ...

    @abstractmethod
    async def hdel(self, key: str, *fields: str) -> int:
        ...

    # =========================================================================
    # Locks
    # =========================================================================

    @abstractmethod
    def lock(self, name: str, timeout: Optional[float] = None) -> Any:
        """Async context manager serializing a read-modify-write section."""

    async def close(self):
        return None


class MemoryCache(CacheBackend):
    """
    In-process cache backend.

    All operations run on the event loop without awaiting in between,
    so each one is atomic with respect to other coroutines.
    """

    def __init__(
        self,
        namespace: str = "content_engine",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.namespace = namespace
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._data: Dict[str, Tuple[Any, Optional[datetime]]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    def _expiry(self, ttl: TTL, expire_at: Optional[datetime]) -> Optional[datetime]:
        if expire_at is not None:
            return expire_at if expire_at.tzinfo else expire_at.replace(tzinfo=timezone.utc)
        seconds = ttl_seconds(ttl)
        if seconds is None:
            return None
        return self._now() + timedelta(seconds=seconds)

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[datetime]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires = entry
        if expires is not None and expires <= self._now():
            self._data.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        if entry is None:
            return None
        return deserialize_value(entry[0]) if isinstance(entry[0], str) else entry[0]

    async def set(self, key: str, value: Any, ttl: TTL = None, expire_at: Optional[datetime] = None) -> bool:
        self._data[key] = (serialize_value(value), self._expiry(ttl, expire_at))
        return True

    async def add(self, key: str, value: Any, ttl: TTL = None, expire_at: Optional[datetime] = None) -> Optional[bool]:
        if self._live(key) is not None:
            return False
        self._data[key] = (serialize_value(value), self._expiry(ttl, expire_at))
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def compare_and_set(self, key: str, expected: Any, value: Any, ttl: TTL = None) -> Optional[bool]:
        entry = self._live(key)
        if entry is None or entry[0] != serialize_value(expected):
            return False
        self._data[key] = (serialize_value(value), self._expiry(ttl, None))
        return True

    async def compare_and_delete(self, key: str, expected: Any) -> Optional[bool]:
        entry = self._live(key)
        if entry is None or entry[0] != serialize_value(expected):
            return False
        del self._data[key]
        return True

    async def incr(self, key: str, amount: int = 1, ttl: TTL = None) -> Optional[int]:
        entry = self._live(key)
        if entry is None:
            value, expires = 0, self._expiry(ttl, None)
        else:
            value, expires = int(entry[0]), entry[1]
        value += amount
        self._data[key] = (value, expires)
        return value

    async def incrbyfloat(self, key: str, amount: float, expire_at: Optional[datetime] = None) -> Optional[float]:
        entry = self._live(key)
        if entry is None:
            value, expires = 0.0, self._expiry(None, expire_at)
        else:
            value, expires = float(entry[0]), entry[1]
        value += amount
        self._data[key] = (value, expires)
        return value

    async def get_float(self, key: str) -> Optional[float]:
        entry = self._live(key)
        if entry is None:
            return None
        try:
            return float(entry[0])
        except (TypeError, ValueError):
            return None

    async def hgetall(self, key: str) -> Dict[str, Any]:
        entry = self._live(key)
        if entry is None:
            return {}
        return {f: deserialize_value(v) for f, v in entry[0].items()}

    async def hset(self, key: str, field: str, value: Any, ttl: TTL = None) -> bool:
        entry = self._live(key)
        mapping = dict(entry[0]) if entry else {}
        mapping[field] = serialize_value(value)
        expires = self._expiry(ttl, None) if ttl is not None else (entry[1] if entry else None)
        self._data[key] = (mapping, expires)
        return True

    async def hdel(self, key: str, *fields: str) -> int:
        entry = self._live(key)
        if entry is None:
            return 0
        mapping = dict(entry[0])
        removed = 0
        for f in fields:
            if mapping.pop(f, None) is not None:
                removed += 1
        self._data[key] = (mapping, entry[1])
        return removed

    @asynccontextmanager
    async def lock(self, name: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            yield
