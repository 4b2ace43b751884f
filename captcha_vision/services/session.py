from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol, Sequence

from loguru import logger


class TensorInfo(Protocol):
    name: str


class InferenceSession(Protocol):
    """The subset of onnxruntime.InferenceSession the model services rely on."""

    def get_inputs(self) -> Sequence[TensorInfo]: ...

    def get_outputs(self) -> Sequence[TensorInfo]: ...

    def run(self, output_names: list[str] | None, input_feed: dict[str, Any]) -> list[Any]: ...


SessionLoader = Callable[[str], Awaitable[InferenceSession]]


async def load_onnx_session(model_path: str) -> InferenceSession:
    """
    Open an ONNX model on the CPU execution provider.

    Session creation parses and optimizes the graph, so it runs in a worker thread.
    """
    import onnxruntime as ort

    if not Path(model_path).exists():
        raise FileNotFoundError(f"ONNX model not found at {model_path}")

    logger.info(f"Loading ONNX model: {model_path}")
    return await asyncio.to_thread(
        ort.InferenceSession, model_path, providers=["CPUExecutionProvider"]
    )
