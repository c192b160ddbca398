"""Core utilities for checkpoint."""

from checkpoint.app.core.config import settings
from checkpoint.app.core.logging import get_logger, setup_logging
from checkpoint.app.core.store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    get_counter_store,
    reset_counter_store,
)

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "get_counter_store",
    "reset_counter_store",
    "settings",
    "get_logger",
    "setup_logging",
]
