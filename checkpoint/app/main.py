from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request

from checkpoint.app.algorithms.models import TokenBucketConfiguration
from checkpoint.app.algorithms.token_bucket import TokenBucket
from checkpoint.app.core.config import settings
from checkpoint.app.core.logging import get_logger, setup_logging
from checkpoint.app.core.store import CounterStore, RedisCounterStore, get_counter_store
from checkpoint.app.exceptions import CounterStoreError
from checkpoint.app.middleware.rate_limit import RateLimitMiddleware


def create_app(store: CounterStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Counter store to use instead of the one selected by settings

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Owns the token bucket refill timer: started on startup, stopped
        before the counter store connection is closed on shutdown.
        """
        counter_store = store or get_counter_store()
        configuration = TokenBucketConfiguration.from_settings(settings)

        async with TokenBucket(configuration, counter_store) as token_bucket:
            app.state.token_bucket = token_bucket
            logger.info(
                "Application startup complete",
                extra={
                    "bucket_size": configuration.bucket_size,
                    "refill_interval_seconds": configuration.refill_interval_seconds,
                    "applied_field": str(configuration.applied_field),
                    "scope": configuration.scope.value,
                },
            )
            yield

        await counter_store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Checkpoint",
        description="Distributed token bucket rate limiting",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(RateLimitMiddleware)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check endpoint with counter store and refill timer status."""
        health_status: dict[str, Any] = {
            "status": "ok",
            "components": {}
        }
        token_bucket: TokenBucket = request.app.state.token_bucket

        try:
            await token_bucket.store.exists("_health_check_test")
            store_type = "redis" if isinstance(token_bucket.store, RedisCounterStore) else "memory"
            health_status["components"]["store"] = {"status": "ok", "type": store_type}
        except CounterStoreError as e:
            health_status["status"] = "degraded"
            health_status["components"]["store"] = {
                "status": "error",
                "error": str(e)[:100]  # Truncate for security
            }

        if token_bucket.is_running:
            timer_status = "ok"
        else:
            timer_status = "stopped"
            health_status["status"] = "degraded"
        health_status["components"]["refill_timer"] = {
            "status": timer_status,
            "tracked_keys": len(token_bucket.tracked_keys),
        }

        return health_status

    return app
