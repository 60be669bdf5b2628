from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXPIRE_SECONDS = 30 * 24 * 60 * 60
DEFAULT_BUFFER_SIZE = 10240
DEFAULT_MULTIPART_BOUNDARY = "MULTIPART_BYTERANGES"


class StreamingSettings(BaseSettings):
    """Configuration for the streaming responder."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    expire_seconds: int = Field(
        default=DEFAULT_EXPIRE_SECONDS,
        validation_alias="MEDIA_STREAM_EXPIRE_SECONDS",
    )
    buffer_size: int = Field(
        default=DEFAULT_BUFFER_SIZE,
        gt=0,
        validation_alias="MEDIA_STREAM_BUFFER_SIZE",
    )
    multipart_boundary: str = Field(
        default=DEFAULT_MULTIPART_BOUNDARY,
        min_length=1,
        validation_alias="MEDIA_STREAM_MULTIPART_BOUNDARY",
    )
    backend: Literal["filesystem", "s3"] = Field(
        default="filesystem",
        validation_alias="MEDIA_STREAM_BACKEND",
    )

    @field_validator("backend", mode="before")
    @classmethod
    def _normalise_backend(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class FileSystemSettings(BaseSettings):
    """Configuration for resources stored on a local filesystem."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    root: str = Field(
        default="./media",
        validation_alias="MEDIA_STREAM_ROOT",
    )
    path_template: str = Field(
        default="{id}.{extension}",
        validation_alias="MEDIA_STREAM_PATH_TEMPLATE",
    )


class S3Settings(BaseSettings):
    """Configuration for resources stored in an S3 compatible bucket."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    endpoint: str | None = Field(
        default=None,
        validation_alias="MEDIA_STREAM_S3_ENDPOINT",
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_STREAM_S3_ACCESS_KEY",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_STREAM_S3_SECRET_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_STREAM_S3_SESSION_TOKEN",
            "AWS_SESSION_TOKEN",
        ),
    )
    region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices(
            "MEDIA_STREAM_S3_REGION",
            "AWS_REGION",
        ),
    )
    bucket: str = Field(
        default="media",
        validation_alias="MEDIA_STREAM_S3_BUCKET",
    )
    key_template: str = Field(
        default="{id}.{extension}",
        validation_alias="MEDIA_STREAM_S3_KEY_TEMPLATE",
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="path",
        validation_alias="MEDIA_STREAM_S3_ADDRESSING_STYLE",
    )


def load_streaming_settings_from_env() -> StreamingSettings:
    """Load responder settings from environment variables.

    Returns:
        StreamingSettings instance populated from environment variables.
    """
    return StreamingSettings()


def load_filesystem_settings_from_env() -> FileSystemSettings:
    """Load filesystem backend settings from environment variables.

    Returns:
        FileSystemSettings instance populated from environment variables.
    """
    return FileSystemSettings()


def load_s3_settings_from_env() -> S3Settings:
    """Load S3 backend settings from environment variables.

    Returns:
        S3Settings instance populated from environment variables.
    """
    return S3Settings()
