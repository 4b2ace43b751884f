from fastapi import APIRouter

from captcha_vision.api.v1.endpoints.health import router as health_router
from captcha_vision.api.v1.endpoints.captcha import router as captcha_router
from captcha_vision.api.v1.endpoints.detection import router as detection_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(captcha_router, tags=["captcha"])
router.include_router(detection_router, tags=["detection"])
