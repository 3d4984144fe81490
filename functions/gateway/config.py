"""
Configuration and settings for the gateway service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(name: str) -> AliasChoices:
    # Gateway knobs accept the GATEWAY_ prefixed name; secrets keep the names
    # the deployment already provisions.
    return AliasChoices(f"GATEWAY_{name}", name)


class Settings(BaseSettings):
    """Environment-backed, immutable settings shared by every handler."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    cors_allow_origin: str = Field(default="*", validation_alias=_env("CORS_ALLOW_ORIGIN"))
    log_level: str = Field(default="INFO", validation_alias=_env("LOG_LEVEL"))

    # Shared secrets checked against the X-Custom-Auth-Key header
    keys_auth: Optional[str] = Field(default=None, validation_alias=_env("KEYS_AUTH"))
    user_db_auth: Optional[str] = Field(
        default=None, validation_alias=_env("USER_DB_AUTH")
    )
    r2_key_secret: Optional[str] = Field(
        default=None, validation_alias=_env("R2_KEY_SECRET")
    )

    # Access password for the verify endpoint
    auth_password: Optional[str] = Field(
        default=None, validation_alias=_env("AUTH_PASSWORD")
    )

    # Image CDN
    account_hash: Optional[str] = Field(
        default=None, validation_alias=_env("ACCOUNT_HASH")
    )
    images_api_token: Optional[str] = Field(
        default=None, validation_alias=_env("IMAGES_API_TOKEN")
    )
    images_account_id: Optional[str] = Field(
        default=None, validation_alias=_env("ACCOUNT_ID")
    )
    images_api_base: str = Field(
        default="https://api.cloudflare.com/client/v4/accounts",
        validation_alias=_env("IMAGES_API_BASE"),
    )
    image_delivery_base: str = Field(
        default="https://imagedelivery.net",
        validation_alias=_env("IMAGE_DELIVERY_BASE"),
    )
    hmac_key: Optional[str] = Field(default=None, validation_alias=_env("HMAC_KEY"))

    # CAPTCHA verification
    cft_secret_key: Optional[str] = Field(
        default=None, validation_alias=_env("CFT_SECRET_KEY")
    )
    turnstile_verify_url: str = Field(
        default="https://challenges.cloudflare.com/turnstile/v0/siteverify",
        validation_alias=_env("TURNSTILE_VERIFY_URL"),
    )

    # Outbound calls wait indefinitely unless this is set.
    upstream_timeout_seconds: Optional[float] = Field(
        default=None, validation_alias=_env("UPSTREAM_TIMEOUT_SECONDS")
    )

    # Profile key-value store (Redis)
    redis_url: Optional[str] = Field(default=None, validation_alias=_env("REDIS_URL"))
    profile_key_prefix: str = Field(
        default="users:", validation_alias=_env("PROFILE_KEY_PREFIX")
    )

    # S3-compatible document bucket
    s3_endpoint: Optional[str] = Field(default=None, validation_alias=_env("S3_ENDPOINT"))
    s3_region: Optional[str] = Field(default=None, validation_alias=_env("S3_REGION"))
    s3_bucket: Optional[str] = Field(default=None, validation_alias=_env("S3_BUCKET"))
    s3_audit_bucket: Optional[str] = Field(
        default=None, validation_alias=_env("S3_AUDIT_BUCKET")
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, validation_alias=_env("AWS_ACCESS_KEY_ID")
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, validation_alias=_env("AWS_SECRET_ACCESS_KEY")
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias=_env("USE_IN_MEMORY_BACKENDS")
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
