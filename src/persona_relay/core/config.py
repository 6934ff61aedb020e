"""Centralized configuration management for Persona Relay.

This module provides a single source of truth for the AI backend settings,
using pydantic-settings for environment variable loading and validation.

Design Principles:
    - Environment Variables: All settings can be overridden via environment variables
    - Sensible Defaults: All settings have production-ready defaults
    - Validation: Pydantic validates all values at load time
    - Singleton Pattern: Cached settings instance via lru_cache

Environment Variables (prefix ``AI_``):
    - AI_PROVIDER: Provider name ("generic", "openai", "anthropic")
    - AI_SERVICE_URL: Base URL of the AI backend
    - AI_API_KEY: API key sent with every request
    - AI_TIMEOUT: Per-attempt timeout in seconds
    - AI_MAX_RETRIES: Maximum attempts per request
    - AI_RETRY_DELAY: Initial backoff delay in seconds
    - AI_DEFAULT_MODEL: Vendor model identifier used when none is given
    - AI_PENDING_TTL / AI_BLACKOUT_DURATION: Deduplicator windows in seconds
    - AI_HEALTH_TIMEOUT: Health check timeout in seconds

Usage:
    from persona_relay.core.config import get_settings

    settings = get_settings()
    adapter = AIServiceAdapterFactory.create(
        provider=settings.provider, base_url=settings.service_url, ...
    )
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AIServiceSettings(BaseSettings):
    """AI backend connection and resilience settings.

    Attributes:
        provider: Provider whose wire format is spoken. Default: "generic".
        service_url: Base URL of the backend. Must start with http:// or
            https://. None means it must be supplied programmatically.
        api_key: API key. Kept as SecretStr so it never shows up in reprs.
        timeout: Per-attempt timeout in seconds. Range: (0, 600]. Default: 30.
        max_retries: Maximum attempts per request. Range: [1, 10]. Default: 3.
        retry_delay: Initial backoff delay in seconds. Default: 1.0.
        default_model: Vendor model identifier used for default models.
        pending_ttl: Seconds an in-flight entry stays coalescable. Default: 30.
        blackout_duration: Seconds a failed fingerprint fails fast. Default: 60.
        health_timeout: Health check timeout in seconds. Default: 5.
        include_model_in_fingerprint: Whether requests for different models
            may coalesce. Default: True (they never do).
    """

    model_config = SettingsConfigDict(
        env_prefix="AI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    provider: str = Field(default="generic", description="AI provider name")
    service_url: str | None = Field(default=None, description="AI service base URL")
    api_key: SecretStr | None = Field(default=None, description="AI service API key")
    timeout: float = Field(default=30.0, gt=0.0, le=600.0, description="Per-attempt timeout (s)")
    max_retries: int = Field(default=3, ge=1, le=10, description="Maximum attempts per request")
    retry_delay: float = Field(default=1.0, ge=0.0, le=60.0, description="Initial backoff (s)")
    default_model: str = Field(default="default", description="Default vendor model identifier")
    pending_ttl: float = Field(default=30.0, gt=0.0, description="Pending entry TTL (s)")
    blackout_duration: float = Field(default=60.0, gt=0.0, description="Blackout window (s)")
    health_timeout: float = Field(default=5.0, gt=0.0, le=60.0, description="Health check timeout (s)")
    include_model_in_fingerprint: bool = Field(
        default=True, description="Include model path in dedup fingerprints"
    )

    @field_validator("service_url")
    @classmethod
    def validate_service_url(cls, v: str | None) -> str | None:
        """Ensure service_url uses http(s) and drop any trailing slash.

        Raises:
            ValueError: If service_url does not start with http:// or https://.
        """
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            msg = "service_url must start with http:// or https://"
            raise ValueError(msg)
        return v.rstrip("/")

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower()


@lru_cache(maxsize=1)
def get_settings() -> AIServiceSettings:
    """Get the cached settings instance.

    Call ``get_settings.cache_clear()`` to pick up changed environment
    variables (tests do this).
    """
    return AIServiceSettings()


__all__ = ["AIServiceSettings", "get_settings"]
