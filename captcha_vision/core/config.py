from __future__ import annotations
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Load .env file from project root (parent of captcha_vision/core)
    _env_file_path = Path(__file__).parent.parent.parent / ".env"

    model_config = SettingsConfigDict(
        env_file=str(_env_file_path) if _env_file_path.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    app_name: str = Field(default="Captcha Vision", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Captcha solver (positional one-hot model, NHWC input)
    captcha_model_path: str = Field(default="models/huntbot.onnx", alias="CAPTCHA_MODEL_PATH")
    captcha_threshold: int = Field(default=254, ge=0, le=255, alias="CAPTCHA_THRESHOLD")
    captcha_min_confidence: float = Field(default=0.0, alias="CAPTCHA_MIN_CONFIDENCE")
    captcha_alphabet: str = Field(default="lowercase", alias="CAPTCHA_ALPHABET")

    # Object detector (box model, NCHW input)
    detector_model_path: str = Field(default="models/yolo.onnx", alias="DETECTOR_MODEL_PATH")
    detector_num_classes: int = Field(default=80, gt=0, alias="DETECTOR_NUM_CLASSES")
    detector_class_names: str = Field(default="", alias="DETECTOR_CLASS_NAMES")
    detector_min_confidence: float = Field(default=0.25, alias="DETECTOR_MIN_CONFIDENCE")

    # Load both models on startup instead of on first request
    warmup_models: bool = Field(default=False, alias="WARMUP_MODELS")

    # Upload validation
    upload_max_size_mb: int = Field(default=5, alias="UPLOAD_MAX_SIZE_MB")

    @property
    def detector_class_name_list(self) -> list[str]:
        return [s.strip() for s in self.detector_class_names.split(",") if s.strip()]
