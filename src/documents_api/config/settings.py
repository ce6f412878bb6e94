# src/documents_api/config/settings.py
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "image/jpeg",
    "image/png",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]


class Settings(BaseSettings):
    """
    Single source of truth for all storage engine settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from documents_api.config.settings import get_settings
        settings = get_settings()
        bucket_name = settings.s3_bucket_name
    """

    # Application Settings
    app_name: str = Field(
        default="compliance-documents",
        description="Application name"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="local-dev",
        description="Deployment mode: local-dev, aws-mock, or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION",
        description="Region the S3 client is configured with before any correction"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL",
        description="Custom endpoint for S3-compatible services (MinIO, moto server)"
    )

    # S3 Configuration
    s3_bucket_name: Optional[str] = Field(
        default=None,
        alias="S3_BUCKET_NAME",
        description="S3 bucket for document storage. Remote storage is disabled when unset."
    )

    s3_force_path_style: bool = Field(
        default=False,
        alias="S3_FORCE_PATH_STYLE"
    )

    s3_server_side_encryption: Optional[str] = Field(
        default="AES256",
        alias="S3_SERVER_SIDE_ENCRYPTION"
    )

    # Local Storage Configuration
    storage_dir: str = Field(
        default="storage/documents",
        alias="STORAGE_DIR",
        description="Root directory of the local filesystem backend"
    )

    # Metadata Store
    database_path: str = Field(
        default="documents.db",
        alias="DATABASE_PATH",
        description="SQLite database holding document records"
    )

    # Presigned URLs
    presign_default_ttl_seconds: int = Field(
        default=300,
        alias="PRESIGN_DEFAULT_TTL_SECONDS"
    )

    presign_max_ttl_seconds: int = Field(
        default=86400,
        alias="PRESIGN_MAX_TTL_SECONDS"
    )

    # Upload Limits
    max_upload_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        alias="MAX_UPLOAD_SIZE_BYTES"
    )

    allowed_mime_types: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES),
        alias="ALLOWED_MIME_TYPES"
    )

    # Degraded mode
    allow_local_fallback: bool = Field(
        default=True,
        alias="ALLOW_LOCAL_FALLBACK",
        description="Store uploads on local disk when the remote backend rejects or cannot take them"
    )

    # Retry / timeout policy for remote calls
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=0.2, alias="RETRY_BASE_DELAY_SECONDS")
    retry_backoff_factor: float = Field(default=2.0, alias="RETRY_BACKOFF_FACTOR")
    retry_jitter_seconds: float = Field(default=0.1, alias="RETRY_JITTER_SECONDS")
    connect_timeout_seconds: float = Field(default=5.0, alias="CONNECT_TIMEOUT_SECONDS")
    read_timeout_seconds: float = Field(default=30.0, alias="READ_TIMEOUT_SECONDS")

    # Logging
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level"
    )

    @field_validator("deployment_mode", mode="before")
    @classmethod
    def normalize_deployment_mode(cls, v):
        """Normalize deployment mode values for backwards compatibility."""
        if v:
            mode_mapping = {
                "local-mock": "local-dev",
                "cloud": "aws-prod",
            }
            return mode_mapping.get(v, v)
        return v

    @field_validator("deployment_mode")
    @classmethod
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        valid_modes = ["local-dev", "aws-mock", "aws-prod"]
        if v not in valid_modes:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {valid_modes}")
        return v

    @field_validator("allowed_mime_types", mode="before")
    @classmethod
    def split_mime_types(cls, v):
        """Accept a comma separated string from the environment."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator(
        "presign_default_ttl_seconds",
        "presign_max_ttl_seconds",
        "max_upload_size_bytes",
        "retry_max_attempts",
    )
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be a positive number")
        return v

    @model_validator(mode="after")
    def check_presign_ttl_bounds(self):
        if self.presign_default_ttl_seconds > self.presign_max_ttl_seconds:
            raise ValueError("presign_default_ttl_seconds cannot exceed presign_max_ttl_seconds")
        return self

    @property
    def remote_enabled(self) -> bool:
        """Remote storage is only wired up when a bucket is configured."""
        return bool(self.s3_bucket_name)

    @property
    def masked_bucket_name(self) -> Optional[str]:
        """Bucket name safe for display (first five characters only)."""
        if not self.s3_bucket_name:
            return None
        return self.s3_bucket_name[:5] + "..."

    def get_environment_dict(self) -> Dict[str, Any]:
        """Get a displayable view of the configuration. Credentials are never included."""
        return {
            "DEPLOYMENT_MODE": self.deployment_mode,
            "AWS_DEFAULT_REGION": self.aws_region,
            "AWS_ENDPOINT_URL": self.aws_endpoint_url or "",
            "S3_BUCKET_NAME": self.masked_bucket_name or "",
            "STORAGE_DIR": self.storage_dir,
            "DATABASE_PATH": self.database_path,
            "PRESIGN_DEFAULT_TTL_SECONDS": self.presign_default_ttl_seconds,
            "MAX_UPLOAD_SIZE_BYTES": self.max_upload_size_bytes,
            "ALLOW_LOCAL_FALLBACK": str(self.allow_local_fallback).lower(),
            "LOG_LEVEL": self.log_level,
        }

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.local-dev", ".env.aws-mock", ".env.aws-prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
