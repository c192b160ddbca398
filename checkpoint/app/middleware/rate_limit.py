"""Rate limiting middleware.

Runs the token bucket admission check for every request and turns a
rejection into a 429 response.
"""

import math
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from checkpoint.app.algorithms.token_bucket import TokenBucket
from checkpoint.app.core.config import settings
from checkpoint.app.core.logging import get_log_context, get_logger
from checkpoint.app.exceptions import AdmissionError, RateLimitExceededError

logger = get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce token bucket rate limits on requests.

    The token bucket is taken from the constructor, or from
    ``request.app.state.token_bucket`` so that the application lifespan
    can own it.
    """

    def __init__(self, app, token_bucket: Optional[TokenBucket] = None):
        super().__init__(app)
        self._token_bucket = token_bucket

    def _get_token_bucket(self, request: Request) -> TokenBucket:
        if self._token_bucket is not None:
            return self._token_bucket
        token_bucket = getattr(request.app.state, "token_bucket", None)
        if token_bucket is None:
            raise RuntimeError(
                "RateLimitMiddleware has no token bucket; pass one or set app.state.token_bucket"
            )
        return token_bucket

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        token_bucket = self._get_token_bucket(request)

        try:
            result = await token_bucket.check_request(request)
        except AdmissionError as exc:
            return await self._handle_admission_failure(request, call_next, exc)

        if not result.allowed:
            config = token_bucket.configuration
            exc = RateLimitExceededError(
                key=result.key,
                limit=result.limit,
                # Denied requests overdraw the bucket: one cycle clears the
                # overdraft, the next one adds tokens
                retry_after=2 * max(1, math.ceil(config.refill_interval_seconds)),
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(),
                headers=exc.headers,
            )

        response = await call_next(request)

        if not result.skipped:
            response.headers["X-RateLimit-Limit"] = str(result.limit)
            response.headers["X-RateLimit-Remaining"] = str(result.remaining)

        return response

    async def _handle_admission_failure(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
        exc: AdmissionError,
    ) -> Response:
        """Apply the fail-open/fail-closed policy to a failed check."""
        context = get_log_context(
            rate_limit_key=exc.key,
            path=request.url.path,
            method=request.method,
        )

        if settings.rate_limit_fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered: {exc}. Request denied.",
                extra=context,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": "rate_limit_unavailable",
                    "message": "Rate limiting is temporarily unavailable. Please try again later.",
                },
            )

        logger.warning(
            f"Rate limiting fail-open triggered: {exc}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        return await call_next(request)
