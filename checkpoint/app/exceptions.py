"""Custom exceptions for the checkpoint rate limiter."""


class CheckpointException(Exception):
    """Base class for checkpoint exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Checkpoint error"):
        self.message = message
        super().__init__(message)


class KeyResolutionError(CheckpointException):
    """Raised when a request lacks the attribute needed to build a bucket key.

    The token bucket treats this as a pass-through: the request is
    neither counted nor rejected.
    """
    status_code = 400

    def __init__(self, field: str | None = None, detail: str | None = None):
        self.field = field
        message = detail or f"Cannot resolve rate limit key from field '{field}'"
        super().__init__(message)


class CounterStoreError(CheckpointException):
    """Raised by a counter store backend when an operation fails.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, operation: str, key: str | None = None, detail: str | None = None):
        self.operation = operation
        self.key = key
        message = f"Counter store {operation} failed"
        if key is not None:
            message += f" for key {key}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class AdmissionError(CheckpointException):
    """Raised when an admission check cannot be completed.

    The single request's check fails; whether to let the request through
    (fail-open) or reject it (fail-closed) is up to the caller.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, key: str, detail: str = "Rate limit storage unavailable"):
        self.key = key
        self.detail = detail
        super().__init__(f"Admission check failed for key {key}: {detail}")


class RateLimitExceededError(CheckpointException):
    """Raised when a bucket has no tokens left for a request.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        key: str,
        limit: int,
        retry_after: int,
        detail: str | None = None
    ):
        self.key = key
        self.limit = limit
        self.retry_after = retry_after
        message = detail or "Rate limit exceeded. Please try again later."
        super().__init__(message)

    @property
    def headers(self) -> dict[str, str]:
        """Response headers describing the exhausted bucket."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "Retry-After": str(self.retry_after),
        }

    def to_response(self) -> dict:
        """Convert to API response format."""
        return {
            "error": "rate_limit_exceeded",
            "message": self.message,
            "retry_after": self.retry_after,
        }
