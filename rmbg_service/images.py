"""
Conversion between caller image types and PIL rasters.

Callers may hand in encoded bytes, a file path, a numpy array or a PIL
image; everything downstream works on `PIL.Image.Image`.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import InvalidImage

ImageSource = Union[Image.Image, np.ndarray, bytes, bytearray, str, Path]


def _from_array(array: np.ndarray) -> Image.Image:
    if array.dtype != np.uint8:
        if np.issubdtype(array.dtype, np.floating):
            array = np.clip(array * 255.0, 0, 255).round().astype(np.uint8)
        else:
            raise InvalidImage(f"Unsupported array dtype {array.dtype}")
    if array.ndim == 2 or (array.ndim == 3 and array.shape[2] in (3, 4)):
        return Image.fromarray(np.ascontiguousarray(array))
    raise InvalidImage(f"Unsupported array shape {array.shape}")


def to_raster(source: ImageSource) -> Image.Image:
    """Return a loaded PIL image for any supported source."""
    if isinstance(source, Image.Image):
        image = source
    elif isinstance(source, np.ndarray):
        image = _from_array(source)
    elif isinstance(source, (bytes, bytearray)):
        try:
            image = Image.open(BytesIO(bytes(source)))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise InvalidImage("Could not decode image data", exc) from exc
    elif isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise InvalidImage(f"Image file not found: {path}")
        try:
            with Image.open(path) as opened:
                opened.load()
                image = opened.copy()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise InvalidImage(f"Could not read image {path}", exc) from exc
    else:
        raise InvalidImage(f"Unsupported image type {type(source).__name__}")

    if image.width <= 0 or image.height <= 0:
        raise InvalidImage("Image has no pixels")
    return image


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
