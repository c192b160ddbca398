"""Rate limiting algorithms.

Only the token bucket is provided: a shared counter per key, decremented
on every request and refilled by a per-process timer.
"""

from .keys import resolve_key
from .models import (
    AdmissionResult,
    AppliedField,
    FieldKind,
    Scope,
    TokenBucketConfiguration,
)
from .token_bucket import TokenBucket, compute_refill

__all__ = [
    "AdmissionResult",
    "AppliedField",
    "FieldKind",
    "Scope",
    "TokenBucketConfiguration",
    "TokenBucket",
    "compute_refill",
    "resolve_key",
]
