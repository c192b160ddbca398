"""Shared fixtures for checkpoint tests."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.requests import Request

from checkpoint.app.algorithms.models import AppliedField, Scope, TokenBucketConfiguration
from checkpoint.app.core.store import InMemoryCounterStore, reset_counter_store


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the global counter store before and after each test."""
    reset_counter_store()
    yield
    reset_counter_store()


@pytest.fixture
def store():
    return InMemoryCounterStore()


@pytest.fixture
def configuration():
    """Bucket of 4 tokens, refilled by 1 token per (long) interval."""
    return TokenBucketConfiguration(
        bucket_size=4,
        refill_time_interval=timedelta(seconds=60),
        refill_token_rate=1,
        applied_field=AppliedField.header("X-API-Key"),
        scope=Scope.API,
    )


@pytest.fixture
def mock_redis():
    """Create a mock redis.asyncio client backed by a dict."""
    redis = MagicMock()
    redis.data = {}

    async def mock_exists(key):
        return 1 if key in redis.data else 0

    async def mock_set(key, value, nx=False):
        if nx and key in redis.data:
            return None
        redis.data[key] = str(value).encode()
        return True

    async def mock_get(key):
        return redis.data.get(key)

    async def mock_incrby(key, amount):
        new_val = int(redis.data.get(key, b"0")) + amount
        redis.data[key] = str(new_val).encode()
        return new_val

    async def mock_decr(key):
        return await mock_incrby(key, -1)

    redis.exists = mock_exists
    redis.set = mock_set
    redis.get = mock_get
    redis.incrby = mock_incrby
    redis.decr = mock_decr
    redis.aclose = AsyncMock()

    return redis


def make_request(
    path: str = "/items",
    method: str = "GET",
    headers: dict[str, str] | None = None,
    query_string: str = "",
) -> Request:
    """Build a starlette Request without a running server."""
    scope = {
        "type": "http",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "root_path": "",
        "path": path,
        "query_string": query_string.encode(),
        "headers": [
            (name.lower().encode(), value.encode())
            for name, value in (headers or {}).items()
        ],
    }
    return Request(scope)


@pytest.fixture
def request_factory():
    return make_request
