from __future__ import annotations

import math
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, GeometryError


@dataclass(frozen=True)
class ImageGeometry:
    width: int
    height: int


def is_image_content_type(content_type: str | None) -> bool:
    media_type = str(content_type or '').split(';', 1)[0].strip().lower()
    return media_type.startswith('image/')


def resolve_geometry(data: bytes) -> ImageGeometry:
    """Return the intrinsic pixel size of a raster image.

    The pixel data is decoded as well, so a payload with a valid header but
    truncated or corrupt data raises ``DecodeError`` here and never reaches
    the document sink.
    """
    if not data:
        raise DecodeError('empty image payload')
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
            img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, EOFError, ValueError) as exc:
        raise DecodeError(f'unsupported raster image: {exc}') from exc
    return ImageGeometry(width=int(width), height=int(height))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scale_to_width(geometry: ImageGeometry, max_width: int) -> tuple[int, int]:
    """Clamp width to ``max_width`` and keep the height/width ratio.

    Height is ``round(h / w * width)`` rounded half-up and clamped to at
    least one pixel, so a 2000x1 strip scales to 600x1 rather than 600x0.
    A zero or negative dimension on either axis is a ``GeometryError``.
    """
    if max_width <= 0:
        raise GeometryError(f'max width must be positive, got {max_width}')
    if geometry.width <= 0 or geometry.height <= 0:
        raise GeometryError(f'degenerate image size {geometry.width}x{geometry.height}')
    width = min(geometry.width, max_width)
    height = max(1, _round_half_up(geometry.height / geometry.width * width))
    return width, height
