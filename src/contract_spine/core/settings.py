"""Settings for contract-spine clients.

One validated settings object carries every knob the resilience core
recognises: retry policy, circuit breaker, rate-limited queue, session
handling and the content cache. Nested sections are plain pydantic models
so they can also be built directly in code and tests.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-call
    - **Environment-driven:** ``CONTRACT_SPINE_*`` env vars and ``.env`` files
    - **Nested sections:** ``CONTRACT_SPINE_RETRY__MAX_RETRIES=5``
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from contract_spine.core.settings import ContractSpineSettings
    >>> settings = ContractSpineSettings(base_url="https://api.example.com")
    >>> settings.retry.max_retries
    3

All durations are seconds.

Tags:
    settings, configuration, pydantic, environment, contract-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackoffStrategy(str, Enum):
    """Delay growth between retries."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class RetryConfig(BaseModel):
    """Retry policy for transient failures."""

    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    jitter: bool = True

    @model_validator(mode="after")
    def _check_delays(self) -> RetryConfig:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker thresholds."""

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=30.0, ge=0)
    monitoring_period: float = Field(default=60.0, gt=0)


class RateLimitConfig(BaseModel):
    """Rate-limited request queue."""

    queue_processing_interval: float = Field(default=0.1, gt=0)
    max_queue_size: int = Field(default=100, ge=1)
    default_backoff: float = Field(default=1.0, ge=0)
    requests_per_tick: int = Field(default=1, ge=1)


class AuthConfig(BaseModel):
    """Challenge-response authentication endpoints and expiry handling."""

    challenge_path: str = "/auth/challenge"
    verify_path: str = "/auth/verify"
    expiry_margin: float = Field(default=30.0, ge=0)


class CacheConfig(BaseModel):
    """ETag-aware content cache."""

    max_entries: int = Field(default=1000, ge=1)


class ContractSpineSettings(BaseSettings):
    """Complete client configuration.

    Fields
    ──────
    base_url       : Backend root URL for the default HTTP transport
    timeout        : Maximum duration of one outbound call
    session_token  : Optional pre-seeded session token
    log_level      : Structlog log level
    log_json       : JSON logs (None → auto-detect from tty)
    retry / circuit_breaker / rate_limit / auth / cache : nested sections
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTRACT_SPINE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Transport ────────────────────────────────────────────────
    base_url: str = "http://localhost:8080"
    timeout: float = Field(default=30.0, gt=0)

    # ── Session ──────────────────────────────────────────────────
    session_token: str | None = None

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Resilience ───────────────────────────────────────────────
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


_settings_cache: ContractSpineSettings | None = None


def get_settings(*, _force_reload: bool = False) -> ContractSpineSettings:
    """Load, validate, and cache the process settings.

    Parameters
    ----------
    _force_reload:
        Bypass cache and reload from the environment.
    """
    global _settings_cache

    if _force_reload or _settings_cache is None:
        _settings_cache = ContractSpineSettings()
    return _settings_cache


__all__ = [
    "BackoffStrategy",
    "RetryConfig",
    "CircuitBreakerConfig",
    "RateLimitConfig",
    "AuthConfig",
    "CacheConfig",
    "ContractSpineSettings",
    "get_settings",
]
