from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import numpy as np

T = TypeVar("T")


@dataclass(frozen=True)
class PreprocessResult:
    """
    Model-ready pixel buffer.

    `data` is a flat float32 array laid out channel-last (pixel-interleaved),
    so the channel of element i is `i % channels`.
    """
    data: np.ndarray
    width: int
    height: int
    channels: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        expected = self.width * self.height * self.channels
        if self.data.size != expected:
            raise ValueError(
                f"Preprocessed buffer has {self.data.size} values, "
                f"expected {self.width}x{self.height}x{self.channels}={expected}"
            )


@dataclass(frozen=True)
class DecodedResult(Generic[T]):
    value: T
    confidence: float
    position: int  # block index (one-hot) or record index (boxes)
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float
    class_name: str
    confidence: float


@dataclass(frozen=True)
class PredictionResult(Generic[T]):
    results: list[DecodedResult[T]]
    raw: np.ndarray | None = None  # unmodified output tensor, flattened
    inference_time_ms: float | None = None
