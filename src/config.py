"""
Configuration management for the Location Sharing backend.
Uses Pydantic Settings to load configuration from environment variables.
"""
from typing import Optional
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ORPHAN_POLICIES = ("retain", "sweep")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(
        default="postgresql+asyncpg://locations:locations@db:5432/locations",
        description="Database connection URL (asyncpg for PostgreSQL, aiosqlite for SQLite)"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )

    # ImageKit (photo blob storage)
    imagekit_private_key: Optional[str] = Field(
        default=None,
        description="ImageKit private API key used for file deletion"
    )
    imagekit_api_base_url: str = Field(
        default="https://api.imagekit.io/v1",
        description="Base URL for the ImageKit media API"
    )
    imagekit_url_endpoint: str = Field(
        default="https://ik.imagekit.io/locations",
        description="Public URL endpoint photos are served from"
    )
    blob_store_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for a single blob deletion call"
    )
    blob_delete_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum number of blob deletions running in parallel during a cascade"
    )

    # =========================================================================
    # Lifecycle policy
    # =========================================================================

    # Locations left with no saves after a non-creator removes the last one
    orphan_policy: str = Field(
        default="retain",
        description="What the orphan sweep does with unreferenced locations: 'retain' (report only) or 'sweep' (cascade delete)"
    )
    orphan_grace_period_days: int = Field(
        default=30,
        ge=0,
        description="Days a location must stay orphaned before the sweep may delete it"
    )
    tombstone_retention_days: int = Field(
        default=90,
        ge=1,
        description="Days a delete tombstone is kept; a repeated delete after that gets 404"
    )
    blob_retry_batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum pending blob deletions retried per reconciliation run"
    )

    # Photo listing
    photos_page_size_default: int = Field(
        default=20,
        description="Default page size for photo listings"
    )
    photos_page_size_max: int = Field(
        default=100,
        description="Upper bound for photo listing page size"
    )

    # Public locations feed
    public_locations_limit_max: int = Field(
        default=100,
        description="Upper bound for the public feed without a map viewport (grid view)"
    )
    public_locations_bounds_limit_max: int = Field(
        default=500,
        description="Upper bound for the public feed filtered by a map viewport"
    )

    @model_validator(mode='after')
    def check_orphan_policy(self) -> 'Settings':
        if self.orphan_policy not in ORPHAN_POLICIES:
            raise ValueError(
                f"ORPHAN_POLICY must be one of {', '.join(ORPHAN_POLICIES)}, "
                f"got '{self.orphan_policy}'"
            )
        return self

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Root log level")


# Global settings instance
settings = Settings()
