"""Mask decoding and alpha compositing for RMBG-2.0 outputs."""

from __future__ import annotations

import logging
from typing import Any, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import OutputCreationFailed

logger = logging.getLogger(__name__)


def decode_mask(raw: Any, side: int) -> Image.Image:
    """
    Turn the model's matte output into a `side` x `side` grayscale mask.

    Values are foreground probabilities (sigmoid already applied by the
    model); they are clamped to [0, 1] before scaling to 0..255.
    """
    try:
        values = np.asarray(raw, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise OutputCreationFailed("Model output is not numeric", exc) from exc

    count = side * side
    if side <= 0 or values.size < count:
        raise OutputCreationFailed(f"Model output has {values.size} values, expected {count}")

    values = np.nan_to_num(values[:count], nan=0.0)
    # Round half up so x.5 always goes to the brighter level.
    alpha = np.floor(np.clip(values, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
    return Image.fromarray(alpha.reshape(side, side))


def resize_mask(mask: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Resize a grayscale mask to `size` (width, height)."""
    width, height = size
    if width <= 0 or height <= 0:
        raise OutputCreationFailed(f"Invalid mask size {width}x{height}")
    if mask.size == (width, height):
        return mask.convert("L")

    try:
        mask_np = np.asarray(mask.convert("L"), dtype=np.uint8)
        shrinking = width * height < mask_np.shape[0] * mask_np.shape[1]
        interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC
        resized = cv2.resize(mask_np, (width, height), interpolation=interpolation)
    except (cv2.error, ValueError) as exc:
        raise OutputCreationFailed("Failed to resize mask", exc) from exc
    return Image.fromarray(resized)


def apply_mask(mask: Image.Image, image: Image.Image) -> Image.Image:
    """
    Write `mask` into the alpha channel of `image`.

    Both must have the same pixel size; colour channels are copied unchanged.
    """
    if mask.size != image.size:
        raise ValueError(f"Mask size {mask.size} does not match image size {image.size}")

    try:
        rgb_np = np.asarray(image.convert("RGB"), dtype=np.uint8)
        alpha_u8 = np.asarray(mask.convert("L"), dtype=np.uint8)
        rgba = np.dstack((rgb_np, alpha_u8))
        return Image.fromarray(rgba)
    except (OSError, ValueError) as exc:
        raise OutputCreationFailed("Failed to apply mask", exc) from exc
