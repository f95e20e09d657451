"""
Configuration management for Contest Ledger.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Contest Ledger")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./contest_ledger.db")

    # Contest
    contest_deadline: datetime = Field(
        default=datetime.fromisoformat("2026-02-14T00:00:00+08:00"),
        description="Instant at which submissions and voting close (ISO-8601).",
    )

    # Identity
    auth_jwt_secret: str = Field(default="your-secret-key-here")
    auth_jwt_algorithm: str = Field(default="HS256")
    auth_jwt_audience: Optional[str] = Field(default="authenticated")
    auth_jwt_issuer: Optional[str] = Field(default=None)
    auth_token_url: Optional[str] = Field(
        default=None,
        description="Identity provider endpoint used to exchange OAuth codes.",
    )
    auth_api_key: Optional[str] = Field(default=None)
    session_cookie_name: str = Field(default="sb-access-token")
    session_cookie_secure: bool = Field(default=True)

    # Route protection
    protected_path_prefixes: List[str] = Field(
        default_factory=lambda: ["/me", "/notifications"]
    )
    public_redirect_path: str = Field(default="/")

    # Uploads
    upload_max_files: int = Field(default=6)
    upload_max_bytes: int = Field(default=5 * 1024 * 1024)
    upload_allowed_types: List[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp"]
    )
    upload_max_width: int = Field(default=1600)
    upload_webp_quality: int = Field(default=82)
    upload_key_prefix: str = Field(default="useful")

    # Object storage
    storage_uri: str = Field(default="file:///tmp/contest-ledger/uploads")
    storage_public_base_url: str = Field(default="http://localhost:8000/media")
    s3_endpoint_url: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default="auto")
    s3_access_key_id: Optional[str] = Field(default=None)
    s3_secret_access_key: Optional[str] = Field(default=None)

    # Rate limiting
    upload_rate_limit_requests: int = Field(default=20)
    upload_rate_limit_window_seconds: int = Field(default=60)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("contest_deadline")
    @classmethod
    def _deadline_is_aware(cls, value: datetime) -> datetime:
        """Naive deadlines are interpreted as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
