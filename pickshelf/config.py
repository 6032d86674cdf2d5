"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="PickShelf", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./pickshelf.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    media_server_type: Literal["emby", "jellyfin"] = Field(
        default="emby", alias="MEDIA_SERVER_TYPE"
    )
    media_server_url: str = Field(
        default="http://localhost:8096", alias="MEDIA_SERVER_URL"
    )
    media_server_api_key: str | None = Field(
        default=None, alias="MEDIA_SERVER_API_KEY"
    )

    strm_root: Path = Field(default=Path("/strm/pickshelf"), alias="STRM_ROOT")
    library_path_prefix: str = Field(
        default="/strm/pickshelf", alias="LIBRARY_PATH_PREFIX"
    )
    library_name_prefix: str = Field(
        default="AI Picks - ", alias="LIBRARY_NAME_PREFIX"
    )
    use_streaming_url: bool = Field(default=False, alias="STRM_USE_STREAMING_URL")
    download_images: bool = Field(default=False, alias="STRM_DOWNLOAD_IMAGES")
    use_symlinks: bool = Field(default=False, alias="STRM_USE_SYMLINKS")

    channel_item_count: int = Field(
        default=20, alias="CHANNEL_ITEM_COUNT", ge=1, le=200
    )
    oversample_factor: int = Field(default=3, alias="OVERSAMPLE_FACTOR", ge=1, le=10)
    file_batch_size: int = Field(default=20, alias="FILE_BATCH_SIZE", ge=1, le=200)
    image_batch_size: int = Field(default=10, alias="IMAGE_BATCH_SIZE", ge=1, le=100)
    date_added_interval_seconds: int = Field(
        default=60, alias="DATE_ADDED_INTERVAL_SECONDS", ge=1
    )
    sync_interval_seconds: int = Field(default=21_600, alias="SYNC_INTERVAL", ge=0)

    @field_validator("media_server_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        """Normalise the media server base URL."""

        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("media_server_type", mode="before")
    @classmethod
    def _lower_server_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("media_server_api_key", mode="before")
    @classmethod
    def _blank_api_key(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
