"""Token bucket data models.

This module contains the immutable configuration and the result of an
admission check.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Optional


class FieldKind(str, Enum):
    """Request attribute families a bucket key can be derived from."""
    HEADER = "header"
    QUERY_ITEM = "query_item"
    NONE = "none"


class Scope(str, Enum):
    """Granularity of a bucket key."""
    ENDPOINT = "endpoint"  # one bucket per caller and route
    API = "api"            # one bucket per caller for the whole API


@dataclass(frozen=True)
class AppliedField:
    """Which request attribute becomes part of the bucket key."""
    kind: FieldKind
    name: Optional[str] = None

    @classmethod
    def header(cls, name: str) -> "AppliedField":
        return cls(FieldKind.HEADER, name)

    @classmethod
    def query_item(cls, name: str) -> "AppliedField":
        return cls(FieldKind.QUERY_ITEM, name)

    @classmethod
    def none(cls) -> "AppliedField":
        """Every caller shares the same bucket inside the scope."""
        return cls(FieldKind.NONE)

    def __post_init__(self) -> None:
        if self.kind != FieldKind.NONE and not (self.name or "").strip():
            raise ValueError(f"{self.kind.value} field needs a non-empty name")

    def __str__(self) -> str:
        if self.name is None:
            return self.kind.value
        return f"{self.kind.value}:{self.name}"


@dataclass(frozen=True)
class TokenBucketConfiguration:
    """Token bucket parameters, created once at startup.

    Attributes:
        bucket_size: Maximum tokens a bucket holds, also its initial value
        refill_time_interval: Period between refill cycles
        refill_token_rate: Tokens added per refill cycle to a partially used bucket
        applied_field: Request attribute used to derive the bucket key
        scope: Whether buckets are per endpoint or API-wide
        key_prefix: Namespace for keys in the counter store
        atomic_initialization: Create new buckets with SET NX instead of SET
    """
    bucket_size: int
    refill_time_interval: timedelta
    refill_token_rate: int
    applied_field: AppliedField = field(default_factory=AppliedField.none)
    scope: Scope = Scope.API
    key_prefix: str = "checkpoint:token_bucket"
    atomic_initialization: bool = False

    def __post_init__(self) -> None:
        if self.bucket_size < 1:
            raise ValueError("bucket_size must be at least 1")
        if self.refill_token_rate < 1:
            raise ValueError("refill_token_rate must be at least 1")
        if self.refill_time_interval <= timedelta(0):
            raise ValueError("refill_time_interval must be positive")

    @property
    def refill_interval_seconds(self) -> float:
        return self.refill_time_interval.total_seconds()

    @classmethod
    def from_settings(cls, settings: Any) -> "TokenBucketConfiguration":
        """Build the configuration from application settings."""
        kind = FieldKind(settings.rate_limit_applied_field)
        name = settings.rate_limit_field_name if kind is not FieldKind.NONE else None
        return cls(
            bucket_size=settings.rate_limit_bucket_size,
            refill_time_interval=settings.rate_limit_refill_time_interval,
            refill_token_rate=settings.rate_limit_refill_token_rate,
            applied_field=AppliedField(kind, name),
            scope=Scope(settings.rate_limit_scope),
            key_prefix=settings.rate_limit_key_prefix,
            atomic_initialization=settings.rate_limit_atomic_initialization,
        )


@dataclass
class AdmissionResult:
    """Result of an admission check.

    A skipped check (no key could be resolved) is allowed without being
    counted, so key is None and remaining carries no information.
    """
    allowed: bool
    key: Optional[str]
    limit: int
    remaining: int
    skipped: bool = False
