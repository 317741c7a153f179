"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_PAYLOAD_BYTES = 65535


class Settings(BaseSettings):
    """Relay configuration loaded from AUDIOSOCKET_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AUDIOSOCKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Network Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 9092
    connect_timeout_ms: int = 2000  # per candidate address
    bootstrap_timeout_ms: int = 2000  # wait for the identity message

    # -------------------------------------------------------------------------
    # Audio Configuration
    # -------------------------------------------------------------------------
    sample_rate: int = 8000  # signed linear, 8kHz
    sample_width: int = 2  # 16-bit
    frame_duration_ms: int = 20  # 20ms frames

    # -------------------------------------------------------------------------
    # Session Configuration
    # -------------------------------------------------------------------------
    max_call_duration_s: float = 120.0
    audio_file: str | None = None  # raw slin played to each caller

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 <= value <= 65535:
            raise ValueError(f"port out of range: {value}")
        return value

    @field_validator("frame_duration_ms", "sample_rate", "sample_width", "connect_timeout_ms")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @model_validator(mode="after")
    def _check_frame_size(self) -> "Settings":
        if self.frame_size_bytes > MAX_PAYLOAD_BYTES:
            raise ValueError(
                f"frame of {self.frame_size_bytes} bytes exceeds {MAX_PAYLOAD_BYTES}"
            )
        return self

    @property
    def frame_size_bytes(self) -> int:
        """Calculate frame size in bytes for telephony audio (mono)."""
        samples_per_frame = int(self.sample_rate * self.frame_duration_ms / 1000)
        return samples_per_frame * self.sample_width

    @property
    def cadence(self) -> float:
        """Frame duration in seconds."""
        return self.frame_duration_ms / 1000

    @property
    def connect_timeout(self) -> float:
        return self.connect_timeout_ms / 1000

    @property
    def bootstrap_timeout(self) -> float:
        return self.bootstrap_timeout_ms / 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
