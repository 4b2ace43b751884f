from __future__ import annotations

import asyncio
from io import BytesIO
from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image

from captcha_vision.services.model_service import ModelService


class FakeSession:
    """Stands in for onnxruntime.InferenceSession."""

    def __init__(self, output=None, input_name="input_1", output_name="output_1", error=None):
        self.output = output
        self.input_name = input_name
        self.output_name = output_name
        self.error = error
        self.calls = []

    def get_inputs(self):
        return [SimpleNamespace(name=self.input_name)]

    def get_outputs(self):
        return [SimpleNamespace(name=self.output_name)]

    def run(self, output_names, input_feed):
        self.calls.append((output_names, input_feed))
        if self.error is not None:
            raise self.error
        return [self.output]


@pytest.fixture(autouse=True)
def reset_singletons():
    ModelService._instances.clear()
    yield
    ModelService._instances.clear()


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def make_loader():
    def _make(session=None, error=None, delay=0.0):
        calls = []

        async def loader(path):
            calls.append(path)
            if delay:
                await asyncio.sleep(delay)
            if error is not None:
                raise error
            return session

        loader.calls = calls
        return loader

    return _make


def _encode(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    """Encode an RGBA uint8 array (H, W, 4) or a PIL image as PNG bytes."""
    def _png(src) -> bytes:
        if isinstance(src, np.ndarray):
            src = Image.fromarray(src.astype(np.uint8))
        return _encode(src)

    return _png


def one_hot(indices, depth=27, score=1.0) -> np.ndarray:
    out = np.zeros((len(indices), depth), dtype=np.float32)
    for pos, idx in enumerate(indices):
        out[pos, idx] = score
    return out.ravel()


@pytest.fixture
def one_hot_buffer():
    return one_hot
