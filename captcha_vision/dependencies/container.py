from __future__ import annotations

from dataclasses import dataclass
from fastapi import Request
from loguru import logger

from captcha_vision.core.config import Settings
from captcha_vision.services.captcha import CaptchaModelService, get_captcha_service
from captcha_vision.services.detection import DetectorModelService, get_detector_service
from captcha_vision.services.image_io import ImageIOService


# ============================
# Dependency Injection Container
# ============================

@dataclass(frozen=True)
class Container:
    settings: Settings

    # Upload handling
    image_io: ImageIOService

    # Model pipelines (process-wide singletons)
    captcha: CaptchaModelService
    detector: DetectorModelService

    # ----------------------------
    # Factory
    # ----------------------------
    @classmethod
    def from_settings(cls, settings: Settings) -> "Container":
        image_io = ImageIOService(max_file_size_mb=settings.upload_max_size_mb)

        # ---- Captcha solver ----
        captcha = get_captcha_service(
            {
                "model_path": settings.captcha_model_path,
                "preprocessor": {"threshold": settings.captcha_threshold},
                "decoder": {
                    "min_confidence": settings.captcha_min_confidence,
                    "alphabet": settings.captcha_alphabet,
                },
            }
        )

        # ---- Object detector ----
        detector = get_detector_service(
            {
                "model_path": settings.detector_model_path,
                "decoder": {
                    "num_classes": settings.detector_num_classes,
                    "class_names": settings.detector_class_name_list,
                    "min_confidence": settings.detector_min_confidence,
                },
            }
        )
        logger.info(
            f"Pipelines configured: captcha={captcha.config.model_path}, "
            f"detector={detector.config.model_path}"
        )

        return cls(settings=settings, image_io=image_io, captcha=captcha, detector=detector)

    # ----------------------------
    # Lifecycle Hooks
    # ----------------------------
    async def start(self) -> None:
        """
        Called on FastAPI startup. Models load lazily unless warm-up is enabled.
        """
        if self.settings.warmup_models:
            await self.captcha.initialize()
            await self.detector.initialize()

    async def stop(self) -> None:
        """
        Called on FastAPI shutdown.
        """
        await self.captcha.dispose()
        await self.detector.dispose()


# ============================
# FastAPI Dependency
# ============================

def get_container(request: Request) -> Container:
    return request.app.state.container
