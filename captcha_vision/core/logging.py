from __future__ import annotations

import sys
from loguru import logger

from captcha_vision.core.config import Settings


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        level=settings.log_level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        "{extra[pipeline]} | <cyan>{name}</cyan> - <level>{message}</level>",
        backtrace=False,
        diagnose=False,
        enqueue=True,
    )
    logger.configure(extra={"pipeline": "-"})
