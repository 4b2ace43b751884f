from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from loguru import logger

from captcha_vision.core.errors import BadRequest
from captcha_vision.dependencies.container import Container, get_container
from captcha_vision.models.schemas import DecodedCharacter, SolveResponse
from captcha_vision.utils.timing import timed

router = APIRouter()


@router.post("/captcha/solve", response_model=SolveResponse)
async def solve_captcha(
    image: UploadFile = File(...),
    container: Container = Depends(get_container),
) -> SolveResponse:
    """
    Solve a captcha image. Returns the decoded text and per-character confidences.
    """
    if not image.filename:
        raise BadRequest("Image file is required")

    logger.info(f"Captcha solve request for image: {image.filename}")

    with timed("Image load"):
        data = await container.image_io.read_upload(image)

    with timed("Captcha prediction"):
        prediction = await container.captcha.predict(data)

    decoder = container.captcha.decoder
    text = decoder.to_string(prediction.results)
    confidence = decoder.average_confidence(prediction.results)
    logger.info(f"Solved captcha: {text!r} (confidence: {confidence:.3f})")

    return SolveResponse(
        text=text,
        confidence=confidence,
        characters=[
            DecodedCharacter(value=r.value, confidence=r.confidence, position=r.position)
            for r in prediction.results
        ],
        inference_ms=prediction.inference_time_ms,
    )
