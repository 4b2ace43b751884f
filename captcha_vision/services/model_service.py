from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from enum import Enum
from time import perf_counter
from typing import Any, ClassVar, Generic, TypeVar

import numpy as np
from loguru import logger
from pydantic import BaseModel, ConfigDict

from captcha_vision.core.errors import (
    AppError,
    DecodeError,
    InferenceError,
    InputError,
    LoadError,
    PredictionError,
)
from captcha_vision.models.domain import PredictionResult, PreprocessResult
from captcha_vision.services.decoding import Decoder
from captcha_vision.services.preprocessing import Preprocessor
from captcha_vision.services.session import InferenceSession, SessionLoader, load_onnx_session
from captcha_vision.utils.timing import elapsed_ms

T = TypeVar("T")


class ModelState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DISPOSED = "disposed"


class ModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    model_path: str


# Untyped failures are attributed to the stage they happened in
_STAGE_ERRORS: dict[str, type[AppError]] = {
    "initialize": LoadError,
    "preprocess": InputError,
    "inference": InferenceError,
    "decode": DecodeError,
}


def _consume_outcome(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class ModelService(ABC, Generic[T]):
    """
    Owns one lazily loaded inference session and runs preprocess -> infer -> decode.

    One instance per concrete subclass exists per process, reached through
    `get_instance()`. Concurrent `initialize()` calls share a single load.
    """
    pipeline: ClassVar[str] = "model"

    _instances: ClassVar[dict[type, "ModelService"]] = {}
    _instances_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        config: ModelConfig,
        preprocessor: Preprocessor,
        decoder: Decoder[T],
        loader: SessionLoader | None = None,
        log=None,
    ) -> None:
        self.config = config
        self.preprocessor = preprocessor
        self.decoder = decoder
        self.logger = log or logger.bind(pipeline=self.pipeline)
        self._loader = loader or load_onnx_session

        self._session: InferenceSession | None = None
        self._init_task: asyncio.Future | None = None
        self._state = ModelState.UNINITIALIZED
        # Bumped by dispose() so a load that was in flight does not resurrect the session
        self._generation = 0

    # ----------------------------
    # Singleton access
    # ----------------------------
    @classmethod
    @abstractmethod
    def create(cls, config: Any = None, **kwargs: Any) -> "ModelService[T]":
        """Build a fresh instance, merging `config` overrides over the defaults."""
        raise NotImplementedError

    @classmethod
    def get_instance(cls, config: Any = None, **kwargs: Any):
        with ModelService._instances_lock:
            instance = ModelService._instances.get(cls)
            if instance is None:
                instance = cls.create(config, **kwargs)
                ModelService._instances[cls] = instance
            elif config is not None or kwargs:
                instance.logger.debug("Instance already exists, ignoring new configuration")
            return instance

    @classmethod
    def reset(cls) -> None:
        """Forget the singleton without releasing its session."""
        with ModelService._instances_lock:
            ModelService._instances.pop(cls, None)

    # ----------------------------
    # Lifecycle
    # ----------------------------
    @property
    def state(self) -> ModelState:
        return self._state

    def is_initialized(self) -> bool:
        return self._session is not None

    def get_config(self) -> ModelConfig:
        return self.config

    async def initialize(self) -> None:
        if self._session is not None:
            return

        if self._init_task is None:
            self._state = ModelState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._load(self._generation))

        # A cancelled caller must not cancel the load other callers are waiting on
        await asyncio.shield(self._init_task)

    async def _load(self, generation: int) -> None:
        path = self.config.model_path
        self.logger.debug(f"Loading {self.pipeline} model from {path}")
        try:
            session = await self._loader(path)
        except Exception as e:
            self.logger.error(f"Failed to load {self.pipeline} model: {e}")
            if generation == self._generation:
                self._state = ModelState.UNINITIALIZED
            raise LoadError(f"Failed to initialize {self.pipeline} model from {path}: {e}") from e

        if generation != self._generation:
            self.logger.warning(f"{self.pipeline} model was disposed while loading, discarding session")
            return

        self._session = session
        self._state = ModelState.READY
        self.logger.info(f"{self.pipeline} model loaded successfully")

    async def dispose(self) -> None:
        """
        Drop the session and the init memo, and clear the singleton slot.

        Predictions already past initialization keep their own reference to the
        session and finish against it.
        """
        session, self._session = self._session, None
        pending, self._init_task = self._init_task, None
        if pending is not None and not pending.done():
            # the abandoned load may have no awaiter left
            pending.add_done_callback(_consume_outcome)
        self._generation += 1
        self._state = ModelState.DISPOSED
        if session is not None:
            self.logger.info(f"{self.pipeline} session released")

        with ModelService._instances_lock:
            if ModelService._instances.get(type(self)) is self:
                del ModelService._instances[type(self)]

    # ----------------------------
    # Inference
    # ----------------------------
    @abstractmethod
    def to_tensor(self, pre: PreprocessResult) -> np.ndarray:
        """Arrange a preprocessed buffer into the session's input layout."""
        raise NotImplementedError

    async def run_session(self, session: InferenceSession, tensor: np.ndarray) -> np.ndarray:
        input_name = session.get_inputs()[0].name
        output_name = session.get_outputs()[0].name
        try:
            outputs = await asyncio.to_thread(session.run, [output_name], {input_name: tensor})
        except Exception as e:
            raise InferenceError(f"Inference session failed: {e}") from e

        if not outputs or outputs[0] is None:
            raise InferenceError("No output from model")
        return np.asarray(outputs[0], dtype=np.float32).ravel()

    async def predict(self, data: bytes) -> PredictionResult[T]:
        t0 = perf_counter()
        stage = "initialize"
        try:
            await self.initialize()
            session = self._session

            stage = "preprocess"
            pre = self.preprocessor.preprocess(data)

            stage = "inference"
            if session is None:
                raise InferenceError("Session not initialized")
            raw = await self.run_session(session, self.to_tensor(pre))

            stage = "decode"
            results = self.decoder.decode(raw)
        except Exception as e:
            self.logger.error(f"Error during {self.pipeline} {stage}: {e}")
            cause = e
            if not isinstance(e, AppError):
                cause = _STAGE_ERRORS[stage](str(e))
                cause.__cause__ = e
            raise PredictionError(self.pipeline, stage, cause) from e

        inference_time = elapsed_ms(t0)
        self.logger.debug(f"{self.pipeline} prediction: {len(results)} results in {inference_time:.2f}ms")
        return PredictionResult(results=results, raw=raw, inference_time_ms=inference_time)

    async def predict_as_string(self, data: bytes) -> str:
        result = await self.predict(data)
        return self.decoder.to_string(result.results)
