from datetime import timedelta

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APPLIED_FIELD_KINDS = ("header", "query_item", "none")
SCOPES = ("endpoint", "api")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional, in-memory counters are used when disabled)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Token bucket settings
    rate_limit_bucket_size: int = 10
    rate_limit_refill_time_interval: timedelta = timedelta(seconds=1)
    rate_limit_refill_token_rate: int = 1

    # Key derivation: which request attribute identifies a bucket
    rate_limit_applied_field: str = "header"  # header | query_item | none
    rate_limit_field_name: str = "X-API-Key"
    rate_limit_scope: str = "api"  # endpoint | api
    rate_limit_key_prefix: str = "checkpoint:token_bucket"

    # Use SET NX when a bucket is first seen instead of a plain SET
    rate_limit_atomic_initialization: bool = False
    rate_limit_fail_closed: bool = (
        False  # If True, reject requests when the counter store is unavailable
    )

    @field_validator("rate_limit_bucket_size", "rate_limit_refill_token_rate")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate token counts are positive."""
        if v < 1:
            raise ValueError("Token bucket values must be at least 1")
        return v

    @field_validator("rate_limit_refill_time_interval")
    @classmethod
    def validate_refill_interval(cls, v: timedelta) -> timedelta:
        """Validate the refill interval is positive."""
        if v <= timedelta(0):
            raise ValueError("rate_limit_refill_time_interval must be positive")
        return v

    @field_validator("rate_limit_applied_field")
    @classmethod
    def validate_applied_field(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in APPLIED_FIELD_KINDS:
            raise ValueError(
                f"rate_limit_applied_field must be one of {', '.join(APPLIED_FIELD_KINDS)}"
            )
        return v

    @field_validator("rate_limit_field_name")
    @classmethod
    def validate_field_name(cls, v: str, info) -> str:
        """Header and query item keys need a name to read."""
        v = v.strip()
        if not v and info.data.get("rate_limit_applied_field", "none") != "none":
            raise ValueError("rate_limit_field_name must not be empty")
        return v

    @field_validator("rate_limit_scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SCOPES:
            raise ValueError(f"rate_limit_scope must be one of {', '.join(SCOPES)}")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
