from __future__ import annotations

from pydantic import BaseModel, Field


class BBox(BaseModel):
    x: float
    y: float
    width: float
    height: float


class HealthResponse(BaseModel):
    status: str
    models: dict[str, bool] = Field(default_factory=dict)


class DecodedCharacter(BaseModel):
    value: str
    confidence: float
    position: int


class SolveResponse(BaseModel):
    """Captcha text decoded from an uploaded image"""
    text: str
    confidence: float  # mean over decoded characters, 0 when nothing decoded
    characters: list[DecodedCharacter] = Field(default_factory=list)
    inference_ms: float | None = None


class DetectedObject(BaseModel):
    """A detected object with bounding box and class"""
    class_name: str
    bbox: BBox
    score: float
    object_id: int  # Record index in the raw model output


class DetectionResponse(BaseModel):
    """Response containing all detected objects in an image.

    Boxes are not overlap-suppressed; the same object may appear more than once.
    """
    objects: list[DetectedObject] = Field(default_factory=list)
    inference_ms: float | None = None
