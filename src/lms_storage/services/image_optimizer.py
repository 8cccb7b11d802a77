"""
Image optimisation applied before uploading photos and course images.

Images at or below ``max_size_bytes`` are passed through untouched. Larger
ones are scaled down to fit ``max_width`` x ``max_height`` (never enlarged)
and re-encoded with the requested quality.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from io import BytesIO
from typing import Literal, Optional

from PIL import Image, UnidentifiedImageError

from ..storage.exceptions import StorageValidationError
from .tenant_storage_service import FileUpload

log = logging.getLogger(__name__)

OutputFormat = Literal["jpeg", "png", "webp", "original"]

DEFAULT_MAX_SIZE_BYTES = 2 * 1024 * 1024


@dataclass(frozen=True)
class ImageOptimizationOptions:
    max_width: int = 1920
    max_height: int = 1080
    quality: int = 85
    format: OutputFormat = "original"
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES


@dataclass(frozen=True)
class OptimizationResult:
    content: bytes
    format: str
    width: int
    height: int
    original_size: int
    optimized_size: int
    was_optimized: bool
    compression_ratio: float

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"


_RECOMMENDED = {
    "image/png": ImageOptimizationOptions(quality=90, format="png"),
    "image/jpeg": ImageOptimizationOptions(quality=85, format="jpeg"),
    "image/jpg": ImageOptimizationOptions(quality=85, format="jpeg"),
    "image/webp": ImageOptimizationOptions(quality=85, format="webp"),
}


def is_image(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("image/")


def recommended_settings(mime_type: str) -> ImageOptimizationOptions:
    """Return per-type defaults; unknown image types keep their own format."""
    return _RECOMMENDED.get(mime_type, ImageOptimizationOptions())


def format_bytes(size: int) -> str:
    """Human-readable size, e.g. ``1.5 KB``."""
    if size == 0:
        return "0 Bytes"
    value = float(size)
    for unit in ("Bytes", "KB", "MB"):
        if value < 1024:
            return f"{round(value, 2):g} {unit}"
        value /= 1024
    return f"{round(value, 2):g} GB"


def _flatten_to_rgb(image: Image.Image) -> Image.Image:
    """JPEG has no alpha channel: composite transparent images onto white."""
    if image.mode in ("RGBA", "LA", "P"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def _encode(image: Image.Image, output_format: str, quality: int) -> bytes:
    buffer = BytesIO()
    if output_format == "jpeg":
        _flatten_to_rgb(image).save(buffer, format="JPEG", quality=quality, optimize=True)
    elif output_format == "png":
        image.save(buffer, format="PNG", optimize=True, compress_level=9)
    elif output_format == "webp":
        image.save(buffer, format="WEBP", quality=quality)
    else:
        image.save(buffer, format=output_format.upper())
    return buffer.getvalue()


def optimize_image_sync(content: bytes, options: Optional[ImageOptimizationOptions] = None) -> OptimizationResult:
    """Blocking implementation of :func:`optimize_image`.

    Raises:
        StorageValidationError: If ``content`` is not a readable image.
    """
    options = options or ImageOptimizationOptions()
    original_size = len(content)

    try:
        image = Image.open(BytesIO(content))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise StorageValidationError(f"Cannot identify image file: {e}") from e

    source_format = (image.format or "").lower()

    if original_size <= options.max_size_bytes:
        return OptimizationResult(
            content=content,
            format=source_format or "unknown",
            width=image.width,
            height=image.height,
            original_size=original_size,
            optimized_size=original_size,
            was_optimized=False,
            compression_ratio=1.0,
        )

    if image.width > options.max_width or image.height > options.max_height:
        # thumbnail() keeps the aspect ratio and never enlarges
        image.thumbnail((options.max_width, options.max_height), Image.Resampling.LANCZOS)

    output_format = source_format if options.format == "original" else options.format
    if output_format in ("", "jpg", "mpo"):
        output_format = "jpeg"

    optimized = _encode(image, output_format, options.quality)
    log.debug(
        "[ImageOptimizer] %s -> %s, %dx%d as %s",
        format_bytes(original_size),
        format_bytes(len(optimized)),
        image.width,
        image.height,
        output_format,
    )
    return OptimizationResult(
        content=optimized,
        format=output_format,
        width=image.width,
        height=image.height,
        original_size=original_size,
        optimized_size=len(optimized),
        was_optimized=True,
        compression_ratio=original_size / len(optimized),
    )


async def optimize_image(content: bytes, options: Optional[ImageOptimizationOptions] = None) -> OptimizationResult:
    """Resize and re-encode ``content`` off the event loop."""
    return await asyncio.to_thread(optimize_image_sync, content, options)


async def optimize_upload(file: FileUpload, options: Optional[ImageOptimizationOptions] = None) -> FileUpload:
    """Optimise an uploaded image, using the recommended settings for its type.

    Non-image uploads are returned unchanged. When the format changes the
    filename extension and content type follow it.
    """
    if not is_image(file.content_type):
        return file

    content = file.content if isinstance(file.content, bytes) else file.content.read()
    result = await optimize_image(content, options or recommended_settings(file.content_type))
    if not result.was_optimized:
        return FileUpload(filename=file.filename, content=content, content_type=file.content_type)

    stem = os.path.splitext(file.filename)[0] or "image"
    return FileUpload(
        filename=f"{stem}.{'jpg' if result.format == 'jpeg' else result.format}",
        content=result.content,
        content_type=result.content_type,
    )
