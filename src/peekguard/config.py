"""Environment-based configuration for PeekGuard."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PEEKGUARD_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PEEKGUARD_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Detector model (Ultra-Light RFB-320)
    models_dir: str = "models"
    model_filename: str = "version-RFB-320.onnx"
    model_repo_id: str | None = None
    input_width: int = Field(default=320, ge=1)
    input_height: int = Field(default=240, ge=1)
    normalize_mean: tuple[float, float, float] = (127.0, 127.0, 127.0)
    normalize_std: tuple[float, float, float] = (128.0, 128.0, 128.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Post-processing
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    iou_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    # Per-frame detector time bound
    detection_timeout: float = Field(default=2.0, gt=0.0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # User settings persistence (None = in-memory only)
    settings_file: str | None = None

    # Number of confirmed peeking events kept in memory
    history_size: int = Field(default=50, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
