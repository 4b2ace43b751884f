from __future__ import annotations

from typing import Any

import numpy as np
from pydantic import Field

from captcha_vision.models.domain import PreprocessResult
from captcha_vision.services.decoding import OneHotDecoder, OneHotDecoderConfig
from captcha_vision.services.model_service import ModelConfig, ModelService
from captcha_vision.services.preprocessing import BinarizingConfig, BinarizingPreprocessor
from captcha_vision.services.session import SessionLoader


class CaptchaModelConfig(ModelConfig):
    model_path: str = "models/huntbot.onnx"
    preprocessor: BinarizingConfig = Field(default_factory=BinarizingConfig)
    decoder: OneHotDecoderConfig = Field(default_factory=OneHotDecoderConfig)


class CaptchaModelService(ModelService[str]):
    """
    Captcha solver: alpha-binarized 160x64 input, one symbol per output position.
    The session takes an NHWC tensor of shape [1, H, W, C].
    """
    pipeline = "captcha"

    @classmethod
    def create(
        cls,
        config: CaptchaModelConfig | dict[str, Any] | None = None,
        loader: SessionLoader | None = None,
        log=None,
    ) -> "CaptchaModelService":
        if not isinstance(config, CaptchaModelConfig):
            config = CaptchaModelConfig.model_validate(config or {})
        return cls(
            config=config,
            preprocessor=BinarizingPreprocessor(config.preprocessor, log=log),
            decoder=OneHotDecoder(config.decoder),
            loader=loader,
            log=log,
        )

    def to_tensor(self, pre: PreprocessResult) -> np.ndarray:
        return pre.data.reshape(1, pre.height, pre.width, pre.channels)


def get_captcha_service(config: CaptchaModelConfig | dict[str, Any] | None = None, **kwargs) -> CaptchaModelService:
    return CaptchaModelService.get_instance(config, **kwargs)
