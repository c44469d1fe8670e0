"""
Shared configuration management for the GCS storage auth layer.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
STORAGE_READ_WRITE_SCOPE = "https://www.googleapis.com/auth/devstorage.read_write"
STORAGE_HOST = "https://storage.googleapis.com"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class GCSAuthConfig(BaseConfig):
    """Settings for token minting, caching and URL signing.

    Every field can be overridden with a ``GCS_AUTH_`` prefixed environment
    variable, e.g. ``GCS_AUTH_REFRESH_MARGIN_SECONDS=120``.
    """

    model_config = SettingsConfigDict(
        env_prefix="GCS_AUTH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # OAuth2 exchange
    token_uri: str = Field(default=GOOGLE_TOKEN_URI)
    scope: str = Field(default=STORAGE_READ_WRITE_SCOPE)
    token_lifetime_seconds: int = Field(default=3600, gt=0)
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # Token cache
    refresh_margin_seconds: int = Field(default=300, ge=0)
    refresh_retry_seconds: float = Field(default=30.0, gt=0)
    refresh_retry_strategy: str = Field(default="fixed")
    refresh_retry_max_seconds: float = Field(default=300.0, gt=0)
    refresh_retry_exponential_base: float = Field(default=2.0, gt=1)
    refresh_retry_jitter: bool = Field(default=False)

    # Signed URLs
    storage_host: str = Field(default=STORAGE_HOST)
    signed_url_default_expires: int = Field(default=3600, gt=0)
    signed_url_max_expires: int = Field(default=604800, gt=0)


def get_config(**overrides) -> GCSAuthConfig:
    """Build a configuration instance from the environment plus explicit overrides."""
    return GCSAuthConfig(**overrides)
