"""
Configuration and settings for the bookstore backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    admin_password: str = Field(default="admin123")

    # Catalog database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Backblaze B2 through its S3-compatible endpoint
    b2_application_key_id: Optional[str] = Field(default=None)
    b2_application_key: Optional[str] = Field(default=None)
    b2_bucket_id: Optional[str] = Field(default=None)
    b2_bucket_name: Optional[str] = Field(default=None)
    b2_endpoint: Optional[str] = Field(default=None)
    b2_region: Optional[str] = Field(default=None)
    b2_cdn_base_url: Optional[str] = Field(default=None)
    cdn_url_ttl_seconds: int = Field(default=3600, ge=60)

    # Cloudinary (cover and blog images)
    cloudinary_cloud_name: Optional[str] = Field(default=None)
    cloudinary_api_key: Optional[str] = Field(default=None)
    cloudinary_api_secret: Optional[str] = Field(default=None)
    cloudinary_folder: str = Field(default="bookstore")

    # Uploads
    uploads_dir: str = Field(default="uploads")
    max_upload_bytes: int = Field(default=50 * 1024 * 1024)
    max_pdf_parts: int = Field(default=10, ge=1)
    catalog_snapshot_path: str = Field(default="data/books.json")
    default_cover_url: str = Field(
        default="https://via.placeholder.com/600x900.webp?text=Book+Cover"
    )

    # HTTP
    force_https: bool = Field(default=False)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    time_sync_url: str = Field(default="https://www.google.com")
    log_level: str = Field(default="INFO")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def has_b2_credentials(self) -> bool:
        return bool(
            self.b2_application_key_id
            and self.b2_application_key
            and self.b2_bucket_id
            and self.b2_bucket_name
        )

    @property
    def has_cloudinary_credentials(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )

    @property
    def covers_folder(self) -> str:
        return f"{self.cloudinary_folder}/book-covers"

    @property
    def blogs_folder(self) -> str:
        return f"{self.cloudinary_folder}/blogs"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
