"""Configuration module using Pydantic Settings."""

import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Upstream completion API
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    upstream_timeout_connect: float = 10.0
    upstream_timeout_read: float = 60.0

    # Rate limiting
    rate_limit: int = 20
    rate_limit_window_seconds: int = 86400  # 24 hours
    limiter_mode: str = "store"  # "store" or "client-reported" (untrusted)

    # Quota store
    quota_backend: str = "memory"  # "memory", "file" or "redis"
    quota_store_name: str = "rate-limits"
    quota_file_path: str | None = None  # Defaults to <tmp>/rate-limit-store.json
    store_timeout_seconds: float = 5.0

    # Redis (blob store backend)
    redis_url: str | None = None
    redis_prefix: str = "quotaproxy:"

    # Client identity
    identity_strategy: str = "ip"  # "ip" or "fingerprint"
    identity_salt: str = ""
    local_dev_bypass: bool = False

    # Bot verification (advisory unless recaptcha_enforce is set)
    environment: str = "production"
    recaptcha_secret_key: str | None = None
    recaptcha_min_score: float = 0.5
    recaptcha_verify_url: str = "https://www.google.com/recaptcha/api/siteverify"
    recaptcha_enforce: bool = False

    # Logging
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]

    @property
    def quota_file(self) -> Path:
        """Get the quota store file path."""
        if self.quota_file_path:
            return Path(self.quota_file_path)
        return Path(tempfile.gettempdir()) / "rate-limit-store.json"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in {"development", "dev", "local"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for quick access
settings = get_settings()
