from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./ecosystem.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = ["*"]
    public_site_url: str = "https://ecosystem40.com"

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 480  # 8 hours
    registration_enabled: bool = True
    encryption_key: str = ""

    # Login throttling / sessions
    max_login_attempts: int = 3
    lockout_minutes: int = 15
    session_timeout_minutes: int = 30
    otp_expiry_minutes: int = 10

    # Two-factor
    totp_issuer: str = "Ecosystem 4.0"
    two_factor_verify_limit: str = "5/5 minutes"

    # Rate limiting
    rate_limit_enabled: bool = True
    api_rate_limit: str = "100/15 minutes"
    auth_rate_limit: str = "5/15 minutes"

    # Cache
    cache_ttl_seconds: int = 300

    # Feature flags / cron
    feature_key: str = ""
    cron_secret: str = ""

    # SMTP (password reset codes)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "no-reply@ecosystem40.com"
    smtp_use_tls: bool = True

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\nFATAL: ECOSYSTEM_JWT_SECRET is set to the default value.\n"
                "   Set ECOSYSTEM_JWT_SECRET to a strong random string before "
                "running in production.\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set ECOSYSTEM_JWT_SECRET env var."
            )
        return v

    class Config:
        env_prefix = "ECOSYSTEM_"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
