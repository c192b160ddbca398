"""Middleware package for checkpoint."""

from checkpoint.app.middleware.rate_limit import RateLimitMiddleware

__all__ = [
    "RateLimitMiddleware",
]
