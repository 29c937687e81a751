"""Environment-based configuration for VerifaceX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODEL_BASE_URL = "https://raw.githubusercontent.com/PT-Perkasa-Pilar-Utama/ppu-uniface/main/models/"


class Settings(BaseSettings):
    """Application settings loaded from VERIFACEX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VERIFACEX_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    face_detection_model: str = "retinaface_mv2"
    face_recognition_model: str = "facenet512"
    spoofing_models: tuple[str, str] = ("minifasnet_v2", "minifasnet_v1se")

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=4, ge=1)
    inference_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Model management
    models_dir: str = "~/.cache/verifacex"
    model_base_url: str = DEFAULT_MODEL_BASE_URL
    model_ttl: int = Field(default=0, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Detection
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    nms_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    pre_nms_top_k: int = Field(default=5000, ge=1)
    post_nms_top_k: int = Field(default=750, ge=1)
    detection_input_height: int = Field(default=320, ge=32)
    detection_input_width: int = Field(default=320, ge=32)

    # Alignment: rotations smaller than this many degrees are skipped (0 = always rotate)
    rotation_epsilon: float = Field(default=2.0, ge=0.0)

    # Verification
    verification_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)

    # Anti-spoofing
    spoofing_enabled: bool = True
    spoofing_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
