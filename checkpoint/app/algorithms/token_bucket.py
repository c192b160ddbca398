"""Distributed token bucket rate limiter.

Bucket state lives in a shared counter store so that every instance of
the service enforces one global limit. Each request takes one token out of
its bucket; a background timer puts tokens back at a fixed cadence,
independent of traffic.

For example, with a bucket size of 4 and a refill rate of 1 token per
second:

- Every request decrements the bucket. If the new value is negative the
  request is rejected, so a negative value counts the rejected requests.
- Every second, an overdrawn bucket is brought back to 0, a partially used
  bucket gets 1 token, and a bucket above capacity is clamped back to 4.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from checkpoint.app.algorithms.keys import resolve_key
from checkpoint.app.algorithms.models import (
    AdmissionResult,
    AppliedField,
    Scope,
    TokenBucketConfiguration,
)
from checkpoint.app.core.logging import get_log_context, get_logger
from checkpoint.app.core.store import CounterStore
from checkpoint.app.exceptions import AdmissionError, CounterStoreError, KeyResolutionError

logger = get_logger(__name__)

KeyResolver = Callable[[Any, AppliedField, Scope, str], str]


def compute_refill(current: int, bucket_size: int, refill_token_rate: int) -> int:
    """Return the amount to add to a bucket holding ``current`` tokens.

    An overdrawn bucket is only brought back to 0; it gets tokens again on
    the following cycle. A bucket at or above capacity is clamped to
    ``bucket_size``. Anything else gets ``refill_token_rate`` tokens, which
    may overshoot the capacity until the next cycle clamps it.
    """
    if current < 0:
        return -current
    if current >= bucket_size:
        return bucket_size - current
    return refill_token_rate


class TokenBucket:
    """Token bucket rate limiter backed by a shared counter store.

    The only process-local state is the set of keys seen by this process,
    which tells the refill timer which buckets to refill. It is guarded by
    a lock that is never held across counter store I/O.

    Usage:
        bucket = TokenBucket(configuration, store)
        async with bucket:  # starts the refill timer
            result = await bucket.check_request(request)
            if not result.allowed:
                ...  # reject with 429
    """

    # Seconds to wait for the refill loop to finish before cancelling it
    STOP_TIMEOUT_SECONDS = 5.0

    def __init__(
        self,
        configuration: TokenBucketConfiguration,
        store: CounterStore,
        log: Optional[logging.Logger] = None,
        key_resolver: KeyResolver = resolve_key,
    ) -> None:
        """Initialize the token bucket.

        Args:
            configuration: Bucket parameters and key derivation policy
            store: Shared counter store holding bucket values
            log: Sink for warnings and errors (defaults to the module logger)
            key_resolver: Derives a bucket key from a request
        """
        self.configuration = configuration
        self.store = store
        self.logger = log or logger
        self._resolve_key = key_resolver
        self._keys: set[str] = set()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def tracked_keys(self) -> frozenset[str]:
        """Keys this process refills on every cycle."""
        return frozenset(self._keys)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_request(self, request: Any) -> AdmissionResult:
        """Check whether a request may proceed.

        Requests the key cannot be resolved for are let through without
        being counted.

        Raises:
            AdmissionError: If the counter store fails during the check
        """
        config = self.configuration
        try:
            key = self._resolve_key(
                request, config.applied_field, config.scope, config.key_prefix
            )
        except KeyResolutionError as e:
            self.logger.debug(
                f"Skipping rate limit check: {e.message}",
                extra=get_log_context(scope=config.scope.value),
            )
            return AdmissionResult(
                allowed=True,
                key=None,
                limit=config.bucket_size,
                remaining=config.bucket_size,
                skipped=True,
            )
        return await self.check_key(key)

    async def check_key(self, key: str) -> AdmissionResult:
        """Take one token out of the bucket identified by key.

        Raises:
            AdmissionError: If the counter store fails during the check
        """
        bucket_size = self.configuration.bucket_size

        async with self._lock:
            self._keys.add(key)

        try:
            if await self.store.exists(key) == 0:
                await self._prepare_bucket(key)
            # Unconditional: a negative value counts rejected requests
            tokens = await self.store.decrement(key)
        except CounterStoreError as e:
            raise AdmissionError(key, e.message) from e
        except Exception as e:
            self.logger.exception(
                f"Unexpected counter store error for key {key}: {e}",
                extra=get_log_context(rate_limit_key=key),
            )
            raise AdmissionError(key, str(e)) from e

        if tokens < 0:
            self.logger.warning(
                f"Rate limit exceeded for key {key}. Rejecting request.",
                extra=get_log_context(rate_limit_key=key, remaining=tokens),
            )
            return AdmissionResult(allowed=False, key=key, limit=bucket_size, remaining=0)

        return AdmissionResult(
            allowed=True, key=key, limit=bucket_size, remaining=min(tokens, bucket_size)
        )

    async def _prepare_bucket(self, key: str) -> None:
        """Fill a bucket seen for the first time.

        A plain SET lets two concurrent first requests both fill the bucket;
        atomic_initialization switches to SET NX.
        """
        config = self.configuration
        written = await self.store.set(
            key, config.bucket_size, only_if_absent=config.atomic_initialization
        )
        if written:
            self.logger.debug(
                f"Initialized bucket {key} to {config.bucket_size} tokens",
                extra=get_log_context(rate_limit_key=key),
            )

    async def reset_window(self) -> dict[str, int]:
        """Refill every bucket this process has seen.

        Each key is refilled by its own task. A failure on one key is logged
        and does not affect the others.

        Returns:
            New bucket value per successfully refilled key
        """
        async with self._lock:
            keys = list(self._keys)

        if not keys:
            return {}

        results = await asyncio.gather(
            *(self._refill(key) for key in keys),
            return_exceptions=True,
        )

        refilled: dict[str, int] = {}
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                self.logger.error(
                    f"Failed to refill bucket {key}: {result}",
                    extra=get_log_context(rate_limit_key=key),
                )
            elif result is not None:
                refilled[key] = result
        return refilled

    async def _refill(self, key: str) -> Optional[int]:
        config = self.configuration
        current = await self.store.get(key)
        if current is None:
            # Expired or deleted outside the core; recreated on the next request
            self.logger.debug(
                f"Bucket {key} missing from store, skipping refill",
                extra=get_log_context(rate_limit_key=key),
            )
            return None

        delta = compute_refill(current, config.bucket_size, config.refill_token_rate)
        new_value = await self.store.increment(key, delta)
        self.logger.debug(
            f"Refilled bucket {key}: {current} -> {new_value} ({delta:+d})",
            extra=get_log_context(rate_limit_key=key),
        )
        return new_value

    async def start(self) -> None:
        """Start the periodic refill task."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._refill_loop())
        self.logger.info(
            f"Started token bucket refill timer "
            f"(every {self.configuration.refill_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the periodic refill task."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self.logger.info("Stopped token bucket refill timer")

    async def _refill_loop(self) -> None:
        """Run reset_window on a fixed cadence until stopped."""
        loop = asyncio.get_running_loop()
        interval = self.configuration.refill_interval_seconds
        next_tick = loop.time() + interval

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=max(0.0, next_tick - loop.time()),
                )
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break

            try:
                await self.reset_window()
            except Exception as e:
                self.logger.error(f"Error during token bucket refill: {e}")

            next_tick += interval
            now = loop.time()
            if next_tick < now:
                # A cycle overran; skip the missed ticks instead of bursting
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval

    async def __aenter__(self) -> "TokenBucket":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
