import re
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": 1,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}


def parse_duration(value: object) -> timedelta:
    """Parse ``15m`` / ``7d`` / ``45`` style durations into a timedelta."""

    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if match:
            amount, unit = match.groups()
            return timedelta(seconds=float(amount) * _DURATION_UNITS[unit.lower()])
    raise ValueError(f"Invalid duration: {value!r}")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./cashheros.db"
    redis_url: str = "redis://localhost:6379/0"

    # Token lifecycle
    jwt_secret: str
    jwt_refresh_secret: str
    jwt_algorithm: str = "HS256"
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    refresh_token_rotation: bool = False
    token_blacklist_backend: Literal["memory", "redis"] = "memory"
    token_blacklist_prefix: str = "auth:blacklist:"

    # Auth security
    auth_lockout_threshold: int = 5
    auth_lockout_duration_seconds: int = 1800
    password_min_length: int = 8
    bcrypt_rounds: int = 12

    # Internal API security
    admin_api_key: str = ""
    integration_api_key: str = ""

    # Catalog
    page_limit_max: int = 100
    page_limit_default: int = 10

    # Store calls
    store_call_timeout_seconds: float = 5.0

    # Cashback ledger
    confirmation_window: timedelta = timedelta(days=30)
    min_withdrawal: Decimal = Decimal("10.00")

    # Cashback sweeper
    cashback_sweeper_enabled: bool = False
    cashback_sweeper_interval_seconds: int = 300
    cashback_sweeper_batch_size: int = 100
    cashback_sweeper_max_per_tick: int = 1000
    cashback_sweeper_lease_seconds: int = 240
    cashback_sweeper_lease_name: str = "cashback-sweeper"

    # Application URLs
    frontend_url: str = "http://localhost:3000"

    # Email delivery
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None

    # Tracing
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None

    cors_allowed_origins: str = "http://localhost:3000"

    @field_validator("access_token_ttl", "refresh_token_ttl", "confirmation_window", mode="before")
    @classmethod
    def _parse_durations(cls, value: object) -> timedelta:
        return parse_duration(value)

    @field_validator("jwt_secret", "jwt_refresh_secret")
    @classmethod
    def _require_strong_secret(cls, value: str) -> str:
        if len(value.encode("utf-8")) < 32:
            raise ValueError("signing secrets must be at least 256 bits")
        return value

    @field_validator("min_withdrawal")
    @classmethod
    def _quantize_minimum(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("min_withdrawal must be non-negative")
        return value.quantize(Decimal("0.01"))

    @field_validator("page_limit_max")
    @classmethod
    def _positive_page_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("page_limit_max must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_token_configuration(self) -> "Settings":
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("jwt_secret and jwt_refresh_secret must differ")
        if self.environment == "production" and self.token_blacklist_backend == "memory":
            raise ValueError("token_blacklist_backend=memory does not survive restarts; use redis in production")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
