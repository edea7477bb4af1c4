"""
Configuration loader for the media upload service.

Environment variables are centralized here to keep the rest of the code
focused on business logic. Entrypoints call `get_settings()` once and pass the
resulting object to the components that need it.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings

STORAGE_BACKENDS = {"r2", "local"}


class Settings(BaseSettings):
    # Storage selection
    storage_backend: str = Field("r2", env="STORAGE_BACKEND")
    storage_root_folder: str = Field("media", env="STORAGE_ROOT_FOLDER")

    # Cloudflare R2 / S3-compatible storage
    r2_endpoint: Optional[str] = Field(None, env="R2_ENDPOINT")
    r2_access_key_id: Optional[str] = Field(None, env="R2_ACCESS_KEY_ID")
    r2_secret_access_key: Optional[str] = Field(None, env="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: Optional[str] = Field(None, env="R2_BUCKET_NAME")
    r2_public_base_url: Optional[str] = Field(None, env="R2_PUBLIC_BASE_URL")

    # Local disk storage (development / offline runs)
    local_storage_dir: Path = Field(Path("./media_store"), env="LOCAL_STORAGE_DIR")
    local_public_base_url: Optional[str] = Field(None, env="LOCAL_PUBLIC_BASE_URL")

    # Upload resilience
    upload_timeout_seconds: float = Field(45.0, env="UPLOAD_TIMEOUT_SECONDS")
    upload_max_attempts: int = Field(3, env="UPLOAD_MAX_ATTEMPTS")
    upload_retry_base_delay_seconds: float = Field(2.0, env="UPLOAD_RETRY_BASE_DELAY_SECONDS")

    # Payment QR rotation
    qr_default_capacity: int = Field(40, env="QR_DEFAULT_CAPACITY")

    # Outbound email
    smtp_host: str = Field("smtp.gmail.com", env="SMTP_HOST")
    smtp_port: int = Field(587, env="SMTP_PORT")
    smtp_username: Optional[str] = Field(None, env="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(None, env="SMTP_PASSWORD")
    smtp_from_name: str = Field("Event Desk", env="SMTP_FROM_NAME")
    smtp_timeout_seconds: float = Field(45.0, env="SMTP_TIMEOUT_SECONDS")
    smtp_max_attempts: int = Field(3, env="SMTP_MAX_ATTEMPTS")
    smtp_retry_base_delay_seconds: float = Field(2.0, env="SMTP_RETRY_BASE_DELAY_SECONDS")
    smtp_overall_deadline_seconds: float = Field(120.0, env="SMTP_OVERALL_DEADLINE_SECONDS")

    log_level: str = Field("INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @validator("storage_backend")
    def validate_storage_backend(cls, v: str) -> str:  # noqa: B902
        v = v.lower()
        if v not in STORAGE_BACKENDS:
            raise ValueError("STORAGE_BACKEND must be one of r2|local")
        return v

    @validator("upload_max_attempts", "smtp_max_attempts")
    def validate_attempts(cls, v: int) -> int:  # noqa: B902
        if v < 1:
            raise ValueError("attempt ceilings must be at least 1")
        return v

    @validator("qr_default_capacity")
    def validate_capacity(cls, v: int) -> int:  # noqa: B902
        if v < 1:
            raise ValueError("QR_DEFAULT_CAPACITY must be positive")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
