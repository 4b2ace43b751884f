from __future__ import annotations

from fastapi import APIRouter, Depends

from captcha_vision.dependencies.container import Container, get_container
from captcha_vision.models.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(container: Container = Depends(get_container)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        models={
            "captcha": container.captcha.is_initialized(),
            "detector": container.detector.is_initialized(),
        },
    )
