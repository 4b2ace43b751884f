from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from loguru import logger

from captcha_vision.core.errors import BadRequest
from captcha_vision.dependencies.container import Container, get_container
from captcha_vision.models.schemas import BBox, DetectedObject, DetectionResponse
from captcha_vision.utils.timing import timed

router = APIRouter()


@router.post("/detect", response_model=DetectionResponse)
async def detect_objects(
    image: UploadFile = File(...),
    container: Container = Depends(get_container),
) -> DetectionResponse:
    """
    Detect objects in an uploaded image.
    Boxes come back in model output order and are not overlap-suppressed.
    """
    if not image.filename:
        raise BadRequest("Image file is required")

    logger.info(f"Detection request for image: {image.filename}")

    with timed("Image load"):
        data = await container.image_io.read_upload(image)

    with timed("Detection"):
        prediction = await container.detector.predict(data)

    logger.info(f"Detected {len(prediction.results)} objects")

    objects = []
    for det in prediction.results:
        box = det.value
        objects.append(
            DetectedObject(
                class_name=box.class_name,
                bbox=BBox(x=box.x, y=box.y, width=box.width, height=box.height),
                score=det.confidence,
                object_id=det.position,
            )
        )

    return DetectionResponse(objects=objects, inference_ms=prediction.inference_time_ms)
