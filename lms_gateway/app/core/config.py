import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(v).strip() for v in raw if str(v).strip()]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    if "*" in parts:
        return ["*"]
    return list(dict.fromkeys(parts))


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables exception messages in 500 responses
    debug: bool = False

    # Bearer token for /admin, /metrics and /stats. Empty disables admin access.
    admin_token: str = ""

    # Rate limiting master switch
    rate_limit_enabled: bool = True

    # Per traffic class limits. A per-hour value of 0 drops the hourly bandwidth.
    rate_limit_api_requests_per_minute: int = 60
    rate_limit_api_requests_per_hour: int = 1000
    rate_limit_auth_requests_per_minute: int = 5
    rate_limit_auth_requests_per_hour: int = 20
    rate_limit_upload_requests_per_minute: int = 10
    rate_limit_upload_requests_per_hour: int = 100

    # Path classification
    rate_limit_api_prefix: str = "/api/"
    rate_limit_auth_prefix: str = "/api/auth/"
    rate_limit_upload_prefix: str = "/api/lms/upload/"
    rate_limit_upload_segment: str = "/upload"

    # Bucket registry bounds
    rate_limit_max_buckets: int = 10000  # LRU eviction beyond this
    rate_limit_idle_seconds: int = 7200  # Buckets untouched this long are swept
    rate_limit_sweep_interval_seconds: int = 300

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings. NoDecode keeps bare hosts like "lms.example.com" from
    # failing JSON decoding at startup.
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("admin_token")
    @classmethod
    def strip_admin_token(cls, v: str) -> str:
        return v.strip()

    @field_validator(
        "rate_limit_api_requests_per_minute",
        "rate_limit_auth_requests_per_minute",
        "rate_limit_upload_requests_per_minute",
        "rate_limit_max_buckets",
        "rate_limit_idle_seconds",
        "rate_limit_sweep_interval_seconds",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator(
        "rate_limit_api_requests_per_hour",
        "rate_limit_auth_requests_per_hour",
        "rate_limit_upload_requests_per_hour",
    )
    @classmethod
    def validate_hourly(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Hourly rate limits must be 0 (disabled) or positive")
        return v

    @field_validator(
        "rate_limit_api_prefix",
        "rate_limit_auth_prefix",
        "rate_limit_upload_prefix",
        "rate_limit_upload_segment",
    )
    @classmethod
    def validate_path_fragment(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("Path prefixes must start with '/'")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
