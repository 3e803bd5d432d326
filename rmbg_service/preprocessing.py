"""
Image preprocessing for RMBG-2.0.

The model takes a fixed 1024x1024 input, ImageNet-normalized, laid out
channel-major as `[1, 3, H, W]` float32.
"""

from __future__ import annotations

import logging

import numpy as np
from PIL import Image

from .constants import MODEL_INPUT_SIZE, NORMALIZATION_MEAN, NORMALIZATION_STD
from .errors import ImageProcessingFailed

logger = logging.getLogger(__name__)

_MEAN = np.asarray(NORMALIZATION_MEAN, dtype=np.float32)
_STD = np.asarray(NORMALIZATION_STD, dtype=np.float32)


def resize_for_model(image: Image.Image, size: int = MODEL_INPUT_SIZE) -> Image.Image:
    """Resample to a `size` x `size` RGBA raster; aspect ratio is not preserved."""
    try:
        return image.convert("RGBA").resize((size, size), Image.LANCZOS)
    except (OSError, ValueError) as exc:
        raise ImageProcessingFailed("Failed to resize input image", exc) from exc


def normalize_pixels(pixels: np.ndarray) -> np.ndarray:
    """
    Normalize an HxWxC uint8 array to a `[1, 3, H, W]` float32 tensor.

    Only the first three channels are used: `(v / 255 - mean[c]) / std[c]`.
    """
    rgb = pixels[..., :3].astype(np.float32) / np.float32(255.0)
    rgb = (rgb - _MEAN) / _STD
    chw = np.transpose(rgb, (2, 0, 1))  # HWC -> CHW
    return np.ascontiguousarray(chw[np.newaxis, ...], dtype=np.float32)


def encode_image(image: Image.Image, size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """Resize and normalize `image` into the model input tensor."""
    resized = resize_for_model(image, size)
    try:
        pixels = np.asarray(resized, dtype=np.uint8)
    except (OSError, ValueError) as exc:
        raise ImageProcessingFailed("Failed to read pixel data", exc) from exc
    if pixels.shape != (size, size, 4):
        raise ImageProcessingFailed(f"Unexpected raster shape {pixels.shape}")

    tensor = normalize_pixels(pixels)
    logger.debug("encoded %sx%s image to tensor %s", image.width, image.height, tensor.shape)
    return tensor
