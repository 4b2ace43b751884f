from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Generic, Literal, Sequence, TypeVar

import numpy as np
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from captcha_vision.core.errors import InputError, ShapeMismatch
from captcha_vision.models.domain import BoundingBox, DecodedResult

T = TypeVar("T")

UNKNOWN_SYMBOL = "?"


def lowercase_symbol(code: int) -> str:
    """0..25 -> a..z"""
    if code < 0 or code > 25:
        return UNKNOWN_SYMBOL
    return chr(code + ord("a"))


def alphanumeric_symbol(code: int) -> str:
    """0 -> space, 1..10 -> 0..9, 11..36 -> a..z"""
    if code == 0:
        return " "
    if 1 <= code <= 10:
        return str(code - 1)
    if 11 <= code <= 36:
        return chr(code + 86)
    return UNKNOWN_SYMBOL


ALPHABETS: dict[str, Callable[[int], str]] = {
    "lowercase": lowercase_symbol,
    "alphanumeric": alphanumeric_symbol,
}


def as_buffer(raw) -> np.ndarray:
    return np.asarray(raw, dtype=np.float32).ravel()


class DecoderConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    min_confidence: float = 0.0


class OneHotDecoderConfig(DecoderConfig):
    depth: int = Field(default=27, gt=0)
    min_confidence: float = 0.0
    alphabet: Literal["lowercase", "alphanumeric"] = "lowercase"


class BoxDecoderConfig(DecoderConfig):
    num_classes: int = Field(default=80, gt=0)
    class_names: tuple[str, ...] = ()
    min_confidence: float = 0.25

    @model_validator(mode="after")
    def _check_names(self) -> "BoxDecoderConfig":
        if len(self.class_names) > self.num_classes:
            raise ValueError(
                f"{len(self.class_names)} class names given for {self.num_classes} classes"
            )
        return self


class Decoder(ABC, Generic[T]):
    config: DecoderConfig

    @abstractmethod
    def decode(self, raw: Sequence[float] | np.ndarray) -> list[DecodedResult[T]]:
        raise NotImplementedError

    def to_string(self, results: list[DecodedResult[T]]) -> str:
        return "".join(str(r.value) for r in results)

    def average_confidence(self, results: list[DecodedResult[T]]) -> float:
        return average_confidence(results)

    def get_config(self) -> DecoderConfig:
        return self.config


def average_confidence(results: Sequence[DecodedResult]) -> float:
    if not results:
        return 0.0
    return sum(r.confidence for r in results) / len(results)


class OneHotDecoder(Decoder[str]):
    """
    Decodes a flat `positions x depth` score buffer into one symbol per position.

    The arg-max of each block wins; ties keep the earliest index. Positions whose
    best score is below `min_confidence` are dropped, so the output may be shorter
    than the number of positions and positions need not be contiguous.
    """

    def __init__(
        self,
        config: OneHotDecoderConfig | None = None,
        symbol: Callable[[int], str] | None = None,
    ) -> None:
        self.config = config or OneHotDecoderConfig()
        self.symbol = symbol or ALPHABETS[self.config.alphabet]

    def decode(self, raw: Sequence[float] | np.ndarray) -> list[DecodedResult[str]]:
        buf = as_buffer(raw)
        depth = self.config.depth

        if buf.size == 0:
            raise InputError("Input array cannot be empty")
        if buf.size % depth != 0:
            raise ShapeMismatch(buf.size, depth)

        # NaN scores never win; np.argmax then returns the first occurrence of the maximum
        blocks = np.where(np.isnan(buf), -np.inf, buf).reshape(-1, depth)
        best = blocks.argmax(axis=1)
        scores = blocks[np.arange(blocks.shape[0]), best]

        results: list[DecodedResult[str]] = []
        for position, (idx, score) in enumerate(zip(best.tolist(), scores.tolist())):
            if score != -np.inf and score >= self.config.min_confidence:
                results.append(
                    DecodedResult(value=self.symbol(idx), confidence=float(score), position=position)
                )
        return results


class BoxDecoder(Decoder[BoundingBox]):
    """
    Simplified detector output decoder.

    Each record is `[x, y, w, h, objectness, class_0 .. class_N)`. Records are
    returned in input order and NO overlap suppression is applied: several boxes
    for the same object are expected, deduplicate downstream if needed.
    """

    def __init__(self, config: BoxDecoderConfig | None = None, log=None) -> None:
        self.config = config or BoxDecoderConfig()
        self._log = log or logger
        self._log.warning(
            "BoxDecoder does not apply non-max suppression; overlapping boxes are returned as-is"
        )

    @property
    def stride(self) -> int:
        return 5 + self.config.num_classes

    def class_name(self, idx: int) -> str:
        names = self.config.class_names
        return names[idx] if idx < len(names) else f"class_{idx}"

    def decode(self, raw: Sequence[float] | np.ndarray) -> list[DecodedResult[BoundingBox]]:
        buf = as_buffer(raw)
        stride = self.stride
        min_conf = self.config.min_confidence

        if buf.size % stride != 0:
            raise ShapeMismatch(buf.size, stride, what="record size")

        results: list[DecodedResult[BoundingBox]] = []
        for i, record in enumerate(buf.reshape(-1, stride)):
            objectness = float(record[4])
            if not objectness >= min_conf:
                continue

            class_probs = np.where(np.isnan(record[5:]), -np.inf, record[5:])
            cls = int(class_probs.argmax())
            confidence = objectness * float(class_probs[cls])
            if not confidence >= min_conf:
                continue

            x, y, w, h = (float(v) for v in record[:4])
            box = BoundingBox(
                x=x, y=y, width=w, height=h,
                class_name=self.class_name(cls),
                confidence=confidence,
            )
            results.append(DecodedResult(value=box, confidence=confidence, position=i))
        return results

    def to_string(self, results: list[DecodedResult[BoundingBox]]) -> str:
        return ", ".join(f"{r.value.class_name}: {r.confidence * 100:.2f}%" for r in results)
