from __future__ import annotations


class AppError(RuntimeError):
    """Base application error."""


class BadRequest(AppError):
    """Invalid request data."""


class DependencyError(AppError):
    """External dependency failed (e.g., model file, inference runtime)."""


class InputError(BadRequest):
    """Input bytes or buffer cannot be processed (empty, unreadable, bad dimensions)."""


class DecodeError(AppError):
    """Raw model output has an unexpected shape."""


class ShapeMismatch(InputError, DecodeError):
    """Buffer length is not a multiple of the expected record size."""

    def __init__(self, length: int, size: int, what: str = "depth") -> None:
        self.length = length
        self.size = size
        super().__init__(f"Array length ({length}) must be divisible by {what} ({size})")


class LoadError(DependencyError):
    """Inference session could not be opened."""


class InferenceError(DependencyError):
    """Inference session is missing, raised, or returned no output."""


class PredictionError(AppError):
    """
    Raised by ModelService.predict for a failure in any pipeline stage.
    `cause` is the typed error raised by the failing stage.
    """

    def __init__(self, pipeline: str, stage: str, cause: Exception) -> None:
        self.pipeline = pipeline
        self.stage = stage
        self.cause = cause
        super().__init__(f"Failed to run {pipeline} model ({stage}): {cause}")
