"""
Service settings, read from the environment and an optional .env file.

Field names map to upper-case environment variables (DATABASE_URL,
PRIVATE_OBJECT_DIR, ...). List-valued settings are comma-separated
strings with list-returning properties next to them.

GCS_MOCK_MODE swaps the bucket for an in-memory store.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All BizOps configuration in one validated object."""

    # HTTP
    api_title: str = "BizOps API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated keys accepted in X-API-Key"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment. Production disables placeholder credentials."
    )
    host: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP listener binds to"
    )
    port: int = Field(
        default=5001,
        ge=1,
        le=65535,
        description="Port the HTTP listener binds to"
    )

    # Database
    database_url: Optional[str] = Field(
        default=None,
        description="Postgres connection string. Hostname is rewritten to IPv4 at startup."
    )
    database_required: bool = Field(
        default=True,
        description="Refuse to start without DATABASE_URL. Disable for storage-only deployments."
    )
    database_schema: str = Field(
        default="public",
        description="search_path pinned on every pooled connection"
    )
    database_pool_size: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Connections kept open by the pool"
    )

    # Google Cloud Storage
    google_application_credentials: Optional[str] = Field(
        default=None,
        description="Path to a service account JSON key. Takes priority over inline credentials."
    )
    gcs_project_id: Optional[str] = Field(
        default=None,
        description="GCP project for inline service account credentials"
    )
    gcs_client_email: Optional[str] = Field(
        default=None,
        description="Service account email for inline credentials"
    )
    gcs_private_key: Optional[str] = Field(
        default=None,
        description="Service account PEM key. Escaped \\n sequences are restored."
    )
    public_object_search_paths: str = Field(
        default="",
        description="Comma-separated /bucket/prefix entries searched in order for public objects"
    )
    private_object_dir: str = Field(
        default="",
        description="/bucket/prefix root under which private uploads are stored"
    )
    gcs_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real GCS. Enables local dev without a bucket."
    )

    # Stripe
    stripe_secret_key: Optional[str] = Field(
        default=None,
        description="Stripe secret key"
    )
    stripe_publishable_key: Optional[str] = Field(
        default=None,
        description="Stripe publishable key, handed to the browser"
    )

    # Upload Limits
    max_upload_size_mb: int = Field(
        default=50,
        description="Maximum upload size in MB, checked before a signed URL is issued."
    )
    allowed_upload_extensions: str = Field(
        default="jpg,jpeg,png,gif,webp,mp4,mov,webm,ogg,pdf,doc,docx,xls,xlsx,txt,csv",
        description="Comma-separated extensions accepted for uploads"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="uvicorn log level"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:5173,http://localhost:5001",
        description="Comma-separated CORS origins, or * to allow any"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("private_object_dir")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        """Store the private root without a trailing slash; callers append '/'."""
        return value.strip().rstrip("/")

    @property
    def api_keys_list(self) -> list[str]:
        """Configured API keys, blanks dropped."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def public_object_search_paths_list(self) -> list[str]:
        """
        Parse PUBLIC_OBJECT_SEARCH_PATHS into an ordered list.

        Order matters: the first prefix holding an object wins.
        """
        return [
            path.strip()
            for path in self.public_object_search_paths.split(",")
            if path.strip()
        ]

    @property
    def allowed_upload_extensions_list(self) -> list[str]:
        """Parse allowed extensions, lowercased and without dots."""
        return [
            ext.strip().lower().lstrip(".")
            for ext in self.allowed_upload_extensions.split(",")
            if ext.strip()
        ]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def cors_origins_list(self) -> list[str]:
        """Allowed CORS origins; a lone * allows all."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate_required_fields(self) -> list[str]:
        """
        Names of environment variables this deployment still needs.

        What counts as required depends on mock mode, DATABASE_REQUIRED
        and the environment, so it can't be expressed as field validation.
        """
        missing = []

        if self.database_required and not self.database_url:
            missing.append("DATABASE_URL")

        # Storage paths only required if not in mock mode
        if not self.gcs_mock_mode:
            if not self.private_object_dir:
                missing.append("PRIVATE_OBJECT_DIR")
            if not self.public_object_search_paths_list:
                missing.append("PUBLIC_OBJECT_SEARCH_PATHS")

        # Placeholder Stripe keys are only tolerated outside production
        if self.is_production:
            if not self.stripe_secret_key:
                missing.append("STRIPE_SECRET_KEY")
            if not self.stripe_publishable_key:
                missing.append("STRIPE_PUBLISHABLE_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide settings.

    serve() calls get_settings.cache_clear() once after the database
    host has been rewritten, so later reads see the IPv4 URL.
    """
    return Settings()
