from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

import numpy as np
from PIL import Image
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from captcha_vision.models.domain import PreprocessResult
from captcha_vision.services.image_io import open_image


class PreprocessConfig(BaseModel):
    """Target tensor geometry shared by all preprocessors."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    channels: Literal[1, 3, 4]


class BinarizingConfig(PreprocessConfig):
    width: int = Field(default=160, gt=0)
    height: int = Field(default=64, gt=0)
    channels: Literal[1, 3, 4] = 1
    threshold: int = Field(default=254, ge=0, le=255)
    background_color: tuple[int, int, int, int] = (0, 0, 0, 0)  # RGBA used for padding


class NormalizingConfig(PreprocessConfig):
    width: int = Field(default=640, gt=0)
    height: int = Field(default=640, gt=0)
    channels: Literal[1, 3] = 3
    normalize: bool = True
    mean_values: tuple[float, float, float] = (0.485, 0.456, 0.406)
    std_values: tuple[float, float, float] = (0.229, 0.224, 0.225)

    @model_validator(mode="after")
    def _check_std(self) -> "NormalizingConfig":
        if any(s == 0 for s in self.std_values):
            raise ValueError("std_values must be non-zero")
        return self


class Preprocessor(ABC):
    config: PreprocessConfig

    @abstractmethod
    def preprocess(self, data: bytes) -> PreprocessResult:
        raise NotImplementedError

    def get_config(self) -> PreprocessConfig:
        return self.config


def center_crop_box(src_w: int, src_h: int, target_w: int, target_h: int) -> tuple[int, int, int, int]:
    """Centered (left, top, right, bottom) crop of at most target size."""
    w = min(src_w, target_w)
    h = min(src_h, target_h)
    left = max(0, (src_w - w) // 2)
    top = max(0, (src_h - h) // 2)
    return left, top, left + w, top + h


def center_padding(cur_w: int, cur_h: int, target_w: int, target_h: int) -> tuple[int, int, int, int]:
    """(left, top, right, bottom) padding; odd deficits put the extra pixel right/bottom."""
    pad_x = max(0, target_w - cur_w)
    pad_y = max(0, target_h - cur_h)
    left = pad_x // 2
    top = pad_y // 2
    return left, top, pad_x - left, pad_y - top


class BinarizingPreprocessor(Preprocessor):
    """
    Captcha preprocessing: center crop/pad to the target box, then binarize on alpha.

    A pixel is "on" (1.0) when its alpha is strictly below the threshold. Ink is
    expected as opaque pixels over a transparent background, so this is an
    alpha-presence test rather than a luminance threshold.
    """

    def __init__(self, config: BinarizingConfig | None = None, log=None) -> None:
        self.config = config or BinarizingConfig()
        self._log = log or logger

    def fit_to_canvas(self, img: Image.Image) -> Image.Image:
        cfg = self.config
        img = img.convert("RGBA")
        w, h = img.size

        if w > cfg.width or h > cfg.height:
            box = center_crop_box(w, h, cfg.width, cfg.height)
            self._log.debug(f"Extracting region: box={box} from {w}x{h}")
            img = img.crop(box)
            w, h = img.size

        if w < cfg.width or h < cfg.height:
            left, top, right, bottom = center_padding(w, h, cfg.width, cfg.height)
            self._log.debug(f"Padding: left={left}, top={top}, right={right}, bottom={bottom}")
            canvas = Image.new("RGBA", (cfg.width, cfg.height), cfg.background_color)
            canvas.paste(img, (left, top))
            img = canvas

        return img

    def binarize(self, img: Image.Image) -> np.ndarray:
        alpha = np.asarray(img.getchannel("A"), dtype=np.uint8)
        on = (alpha < self.config.threshold).astype(np.float32)
        if self.config.channels > 1:
            on = np.repeat(on[..., None], self.config.channels, axis=-1)
        return on.ravel()

    def preprocess(self, data: bytes) -> PreprocessResult:
        img = open_image(data)
        src_size = img.size

        img = self.fit_to_canvas(img)
        pixels = self.binarize(img)

        self._log.debug(
            f"Processed image: {src_size[0]}x{src_size[1]} -> "
            f"{self.config.width}x{self.config.height}x{self.config.channels}"
        )
        return PreprocessResult(
            data=pixels,
            width=self.config.width,
            height=self.config.height,
            channels=self.config.channels,
            metadata={"source_size": src_size, "threshold": self.config.threshold},
        )


class NormalizingPreprocessor(Preprocessor):
    """
    Detector preprocessing: fill-resize (aspect ratio is not preserved),
    drop alpha, scale to [0, 1] and optionally standardize per channel.
    """

    def __init__(self, config: NormalizingConfig | None = None, log=None) -> None:
        self.config = config or NormalizingConfig()
        self._log = log or logger

    def preprocess(self, data: bytes) -> PreprocessResult:
        cfg = self.config
        img = open_image(data)
        src_size = img.size

        mode = "L" if cfg.channels == 1 else "RGB"
        img = img.convert(mode).resize((cfg.width, cfg.height), Image.Resampling.BILINEAR)

        arr = np.asarray(img, dtype=np.float32).reshape(cfg.height, cfg.width, cfg.channels)
        arr = arr / 255.0
        if cfg.normalize:
            mean = np.asarray(cfg.mean_values[: cfg.channels], dtype=np.float32)
            std = np.asarray(cfg.std_values[: cfg.channels], dtype=np.float32)
            arr = (arr - mean) / std

        self._log.debug(f"Resized {src_size[0]}x{src_size[1]} -> {cfg.width}x{cfg.height} ({mode})")
        return PreprocessResult(
            data=arr.astype(np.float32).ravel(),
            width=cfg.width,
            height=cfg.height,
            channels=cfg.channels,
            metadata={"source_size": src_size, "normalized": cfg.normalize},
        )
