from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stream_relay.domain.models import RelayConfig


class Settings(BaseSettings):
    database_url: str = Field(
        default="sqlite:///./var/relay.db", validation_alias="DB_URL"
    )
    database_echo: bool = Field(default=False, validation_alias="DB_ECHO")
    storage_backend: Literal["auto", "sqlite", "memory"] = Field(
        default="auto", validation_alias="STORAGE_BACKEND"
    )
    cache_ttl: float = Field(default=300.0, validation_alias="CACHE_TTL")
    status_cache_ttl: float = Field(default=60.0, validation_alias="STATUS_CACHE_TTL")

    platform_timeout: float = Field(default=30.0, validation_alias="PLATFORM_TIMEOUT")
    http_timeout: float = Field(default=10.0, validation_alias="HTTP_TIMEOUT")
    youtube_api_url: str = Field(
        default="https://youtube.googleapis.com/youtube/v3",
        validation_alias="YOUTUBE_API_URL",
    )
    linkedin_api_url: str = Field(
        default="https://api.linkedin.com/v2", validation_alias="LINKEDIN_API_URL"
    )
    limiter_max_rate: float = Field(default=10, validation_alias="LIMITER_MAX_RATE")
    limiter_time_period: float = Field(
        default=1.0, validation_alias="LIMITER_TIME_PERIOD"
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    default_bitrate: int = Field(default=5000, validation_alias="DEFAULT_BITRATE")
    default_resolution: str = Field(
        default="1080p", validation_alias="DEFAULT_RESOLUTION"
    )
    default_frame_rate: int = Field(default=30, validation_alias="DEFAULT_FRAME_RATE")
    default_audio_quality: int = Field(
        default=192, validation_alias="DEFAULT_AUDIO_QUALITY"
    )
    default_encoder: str = Field(default="x264", validation_alias="DEFAULT_ENCODER")
    default_preset: str = Field(default="veryfast", validation_alias="DEFAULT_PRESET")

    @field_validator("database_echo", mode="before")
    @classmethod
    def _parse_db_echo(cls, v: bool | str) -> bool | str:
        if v == "":
            return False
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def default_relay_config(self) -> RelayConfig:
        return RelayConfig(
            bitrate=self.default_bitrate,
            resolution=self.default_resolution,
            frame_rate=self.default_frame_rate,
            audio_quality=self.default_audio_quality,
            encoder=self.default_encoder,
            preset=self.default_preset,
        )
