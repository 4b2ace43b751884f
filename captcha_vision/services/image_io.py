from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError
from fastapi import UploadFile
from loguru import logger

from captcha_vision.core.errors import InputError


def open_image(data: bytes) -> Image.Image:
    """
    Decode image bytes with PIL.

    Raises:
        InputError: If the buffer is empty, not an image, or has no usable dimensions
    """
    if not data:
        raise InputError("Input image buffer cannot be empty")

    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InputError(f"Invalid or corrupted image file: {e}") from e

    w, h = img.size
    if not w or not h:
        raise InputError(f"Unable to read image dimensions ({w}x{h})")

    logger.debug(f"Decoded image: format={img.format}, mode={img.mode}, size={img.size}")
    return img


@dataclass
class ImageIOService:
    """
    Reads uploaded image files into raw bytes for the model pipelines.

    Only empty and oversized uploads are rejected here; decoding errors
    surface from the preprocessors.
    """
    max_file_size_mb: int = 5

    async def read_upload(self, file: UploadFile) -> bytes:
        data = await file.read()

        if not data:
            raise InputError("Uploaded image file is empty")

        size_mb = len(data) / (1024 * 1024)
        if size_mb > self.max_file_size_mb:
            raise InputError(
                f"Image file too large ({size_mb:.1f}MB). "
                f"Maximum allowed: {self.max_file_size_mb}MB."
            )

        logger.debug(f"Read upload {file.filename!r}: {size_mb:.2f}MB")
        return data
