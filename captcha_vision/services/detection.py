from __future__ import annotations

from typing import Any

import numpy as np
from pydantic import Field

from captcha_vision.models.domain import BoundingBox, PreprocessResult
from captcha_vision.services.decoding import BoxDecoder, BoxDecoderConfig
from captcha_vision.services.model_service import ModelConfig, ModelService
from captcha_vision.services.preprocessing import NormalizingConfig, NormalizingPreprocessor
from captcha_vision.services.session import SessionLoader


class DetectorModelConfig(ModelConfig):
    model_path: str = "models/yolo.onnx"
    preprocessor: NormalizingConfig = Field(default_factory=NormalizingConfig)
    decoder: BoxDecoderConfig = Field(default_factory=BoxDecoderConfig)


class DetectorModelService(ModelService[BoundingBox]):
    """
    YOLO-style object detector with the simplified box decoder (no NMS).
    The session takes an NCHW tensor of shape [1, C, H, W].
    """
    pipeline = "detector"

    @classmethod
    def create(
        cls,
        config: DetectorModelConfig | dict[str, Any] | None = None,
        loader: SessionLoader | None = None,
        log=None,
    ) -> "DetectorModelService":
        if not isinstance(config, DetectorModelConfig):
            config = DetectorModelConfig.model_validate(config or {})
        return cls(
            config=config,
            preprocessor=NormalizingPreprocessor(config.preprocessor, log=log),
            decoder=BoxDecoder(config.decoder, log=log),
            loader=loader,
            log=log,
        )

    def to_tensor(self, pre: PreprocessResult) -> np.ndarray:
        # Preprocessed pixels are interleaved (HWC); move channels first
        hwc = pre.data.reshape(pre.height, pre.width, pre.channels)
        return np.ascontiguousarray(hwc.transpose(2, 0, 1))[None, ...]


def get_detector_service(config: DetectorModelConfig | dict[str, Any] | None = None, **kwargs) -> DetectorModelService:
    return DetectorModelService.get_instance(config, **kwargs)
