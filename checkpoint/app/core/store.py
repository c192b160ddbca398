"""Counter store abstraction for token bucket state.

Provides the atomic single-key integer operations the token bucket relies
on, with a Redis implementation shared between instances and an in-memory
implementation for single-process use.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator

import redis
import redis.asyncio as aioredis

from checkpoint.app.exceptions import CounterStoreError


class CounterStore(ABC):
    """Abstract base class for counter stores.

    Every operation is atomic for a single key. No multi-key transactions
    are required, and stores never expire keys on the caller's behalf.
    """

    @abstractmethod
    async def exists(self, key: str) -> int:
        """Return 1 if the key exists, 0 otherwise."""
        pass

    @abstractmethod
    async def set(self, key: str, value: int, only_if_absent: bool = False) -> bool:
        """Store an integer value.

        Args:
            key: Counter key.
            value: Value to store.
            only_if_absent: Only write when the key does not exist yet (SET NX).

        Returns:
            True if the value was written.
        """
        pass

    @abstractmethod
    async def decrement(self, key: str) -> int:
        """Decrement the counter by one and return the new value."""
        pass

    @abstractmethod
    async def increment(self, key: str, delta: int) -> int:
        """Increment the counter by delta and return the new value."""
        pass

    @abstractmethod
    async def get(self, key: str) -> int | None:
        """Return the counter value, or None if the key does not exist."""
        pass

    async def close(self) -> None:
        """Release any connection held by the store."""
        pass


class InMemoryCounterStore(CounterStore):
    """In-memory counter store.

    Mirrors Redis semantics: DECR and INCRBY on a missing key start from 0.

    Note: counters are not shared between processes and are lost when the
    application restarts.
    """

    def __init__(self) -> None:
        self._data: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def exists(self, key: str) -> int:
        async with self._lock:
            return 1 if key in self._data else 0

    async def set(self, key: str, value: int, only_if_absent: bool = False) -> bool:
        async with self._lock:
            if only_if_absent and key in self._data:
                return False
            self._data[key] = int(value)
            return True

    async def decrement(self, key: str) -> int:
        async with self._lock:
            self._data[key] = self._data.get(key, 0) - 1
            return self._data[key]

    async def increment(self, key: str, delta: int) -> int:
        async with self._lock:
            self._data[key] = self._data.get(key, 0) + int(delta)
            return self._data[key]

    async def get(self, key: str) -> int | None:
        async with self._lock:
            return self._data.get(key)

    async def clear(self) -> None:
        """Remove every counter."""
        async with self._lock:
            self._data.clear()


@contextmanager
def _translate_errors(operation: str, key: str) -> Iterator[None]:
    """Re-raise redis client errors as CounterStoreError.

    ValueError covers a malformed redis_url, which only surfaces when the
    client is first created, and a stored value that is not an integer.
    """
    try:
        yield
    except (redis.RedisError, ValueError) as e:
        raise CounterStoreError(operation, key, str(e)) from e


class RedisCounterStore(CounterStore):
    """Redis-based counter store shared by every instance.

    Example:
        >>> store = RedisCounterStore("redis://localhost:6379/0")
        >>> await store.set("checkpoint:token_bucket:api:ab12", 10)
        >>> await store.decrement("checkpoint:token_bucket:api:ab12")
        9
    """

    def __init__(self, redis_url: str | None = None, redis_client: Any | None = None) -> None:
        """Initialize the Redis counter store.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            redis_client: Optional existing redis.asyncio client
        """
        if redis_url is None and redis_client is None:
            raise ValueError("RedisCounterStore needs a redis_url or a redis_client")
        self._redis_url = redis_url
        self._redis = redis_client

    def _get_client(self) -> Any:
        """Get or create the Redis client connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def exists(self, key: str) -> int:
        with _translate_errors("EXISTS", key):
            return int(await self._get_client().exists(key))

    async def set(self, key: str, value: int, only_if_absent: bool = False) -> bool:
        with _translate_errors("SET", key):
            written = await self._get_client().set(key, int(value), nx=only_if_absent)
        return bool(written)

    async def decrement(self, key: str) -> int:
        with _translate_errors("DECR", key):
            return int(await self._get_client().decr(key))

    async def increment(self, key: str, delta: int) -> int:
        with _translate_errors("INCRBY", key):
            return int(await self._get_client().incrby(key, int(delta)))

    async def get(self, key: str) -> int | None:
        with _translate_errors("GET", key):
            value = await self._get_client().get(key)
        return int(value) if value is not None else None

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


# Global store instance (singleton pattern)
_store_instance: CounterStore | None = None


def get_counter_store(
    backend: str | None = None,
    redis_url: str | None = None,
    force_new: bool = False,
) -> CounterStore:
    """Get or create the global counter store.

    Args:
        backend: Store backend to use ('memory', 'redis', or None for auto).
            When None, checks settings.redis_enabled.
        redis_url: Redis connection URL. If not provided, uses settings.redis_url.
        force_new: If True, create a new instance even if one exists.

    Returns:
        A CounterStore instance (InMemoryCounterStore or RedisCounterStore).
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    # Import settings here to avoid circular imports
    from checkpoint.app.core.config import settings

    if backend == "redis":
        use_redis = True
    elif backend == "memory":
        use_redis = False
    else:
        use_redis = settings.redis_enabled

    if use_redis:
        _store_instance = RedisCounterStore(redis_url or settings.redis_url)
    else:
        _store_instance = InMemoryCounterStore()
    return _store_instance


def reset_counter_store() -> None:
    """Reset the global counter store instance.

    This is primarily useful for testing.
    """
    global _store_instance
    _store_instance = None
