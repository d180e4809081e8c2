# app/utils/images.py
"""
Image resizing with Pillow.
Fit modes follow the usual cover/contain/fill/inside/outside semantics;
images are never enlarged.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from app.core.exceptions import ValidationError, WorkItemError
from app.core.jobs import WorkContext, WorkItem
from app.schemas.job import WorkOutput
from app.schemas.utilities import ImageResizerConfig

NAMESPACE = "image-resizer"
JOB_PREFIX = "img-resize"

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/tiff",
}

_EXTENSIONS = {"jpeg": "jpg", "png": "png", "webp": "webp"}
_PIL_FORMATS = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP"}


@dataclass(frozen=True)
class UploadedSource:
    path: str
    original_name: str


def _scale(size: Tuple[int, int], ratio: float) -> Tuple[int, int]:
    ratio = min(ratio, 1.0)
    return max(1, round(size[0] * ratio)), max(1, round(size[1] * ratio))


def target_box(
    size: Tuple[int, int], width: Optional[int], height: Optional[int]
) -> Tuple[int, int]:
    """Requested box, capped at the source dimensions; a missing side follows the ratio."""
    w, h = size
    if width and height:
        return min(width, w), min(height, h)
    if width:
        return _scale(size, width / w)
    return _scale(size, height / h)


def resize_image(image: Image.Image, config: ImageResizerConfig) -> Image.Image:
    if not config.width and not config.height:
        return image.copy()

    fit = config.effective_fit
    size = image.size

    if not (config.width and config.height):
        return image.resize(target_box(size, config.width, config.height), Image.Resampling.LANCZOS)

    if fit == "inside":
        ratio = min(config.width / size[0], config.height / size[1])
        return image.resize(_scale(size, ratio), Image.Resampling.LANCZOS)
    if fit == "outside":
        ratio = max(config.width / size[0], config.height / size[1])
        return image.resize(_scale(size, ratio), Image.Resampling.LANCZOS)

    box = target_box(size, config.width, config.height)
    if fit == "fill":
        return image.resize(box, Image.Resampling.LANCZOS)
    if fit == "contain":
        fill = (255, 255, 255, 0) if image.mode == "RGBA" else "white"
        return ImageOps.pad(image, box, Image.Resampling.LANCZOS, color=fill)
    return ImageOps.fit(image, box, Image.Resampling.LANCZOS)


def _prepare_for_format(image: Image.Image, fmt: str) -> Image.Image:
    if fmt == "jpeg" and image.mode not in ("RGB", "L"):
        return image.convert("RGB")
    if fmt in ("png", "webp") and image.mode not in ("RGB", "RGBA", "L", "LA"):
        return image.convert("RGBA")
    return image


def save_options(config: ImageResizerConfig) -> Dict[str, Any]:
    if config.format == "jpeg":
        return {"quality": config.quality, "progressive": True, "optimize": True}
    if config.format == "webp":
        return {"quality": config.quality}
    return {"optimize": True}


def process_image(source: Path, target: Path, config: ImageResizerConfig) -> Dict[str, Any]:
    """Blocking: resize ``source`` into ``target`` and describe the outcome."""
    original_bytes = source.stat().st_size
    try:
        with Image.open(source) as opened:
            opened.load()
            image = ImageOps.exif_transpose(opened)
    except UnidentifiedImageError as e:
        raise ValidationError("File is not a supported image") from e

    original_size = image.size
    resized = _prepare_for_format(resize_image(image, config), config.format)

    target.parent.mkdir(parents=True, exist_ok=True)
    resized.save(target, format=_PIL_FORMATS[config.format], **save_options(config))

    resized_bytes = target.stat().st_size
    ratio = (original_bytes - resized_bytes) / original_bytes * 100 if original_bytes else 0.0
    return {
        "originalSize": {
            "width": original_size[0],
            "height": original_size[1],
            "fileSize": original_bytes,
        },
        "resizedSize": {
            "width": resized.size[0],
            "height": resized.size[1],
            "fileSize": resized_bytes,
        },
        "compressionRatio": round(max(0.0, ratio), 2),
    }


def output_name(original_name: str, index: int, fmt: str) -> str:
    stem = Path(original_name).stem or "image"
    return f"{stem}_resized_{index + 1}.{_EXTENSIONS[fmt]}"


async def resize_work(
    payload: UploadedSource, config: ImageResizerConfig, context: WorkContext
) -> WorkOutput:
    """Work function: resize one uploaded image, always removing the upload."""
    filename = output_name(payload.original_name, context.index, config.format)
    target = Path(context.work_dir) / filename
    try:
        details = await asyncio.to_thread(process_image, Path(payload.path), target, config)
    except (ValidationError, OSError) as e:
        if target.exists():
            target.unlink()
        raise WorkItemError(f"Failed to resize image: {e}") from e
    finally:
        if os.path.exists(payload.path):
            os.remove(payload.path)

    return WorkOutput(
        message="Image resized successfully",
        artifact_location=str(target),
        archive_name=f"{Path(payload.original_name).stem or 'image'}.{_EXTENSIONS[config.format]}",
        details={
            "originalFileName": payload.original_name,
            "resizedFileName": filename,
            **details,
        },
    )


def build_items(sources: list) -> list:
    return [WorkItem(identity=s.original_name, payload=s) for s in sources]
