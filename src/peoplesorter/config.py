"""Environment-based configuration for PeopleSorter."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PEOPLESORTER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PEOPLESORTER_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Where downloaded detector weights are kept
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    batch_concurrency: int = Field(default=1, ge=1, le=10)
    detection_timeout: float = Field(default=30.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
