"""
High-level RMBG-2.0 processing pipeline.

`BackgroundRemover` owns one loaded model and sequences a single removal:
raster -> tensor -> engine -> mask -> resize -> composite.
`process_image_bytes` is the bytes-in / PNG-out entry point used by the
HTTP API and the batch worker; it shares one remover per process.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from threading import Lock
import time
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np
from PIL import Image

from . import config
from .constants import INPUT_NAME, MASK_OUTPUT_NAME
from .engine import InferenceEngine
from .errors import InferenceError, InvalidImage, OutputCreationFailed, RMBGError
from .images import ImageSource, encode_png, to_raster
from .model_loader import load_model
from .postprocessing import apply_mask, decode_mask, resize_mask
from .preprocessing import encode_image
from .progress import ProgressCallback

logger = logging.getLogger(__name__)

OUTPUT_IMAGE = "image"
OUTPUT_MASK = "mask"


@dataclass(frozen=True)
class RemovalResult:
    image: Image.Image  # RGBA, original size
    mask: Image.Image  # L, original size
    inference_time: float  # seconds spent in the engine only


class BackgroundRemover:
    """
    Background removal with a single loaded RMBG-2.0 model.

    The model is acquired and loaded at construction time unless an engine is
    injected. Calls run sequentially on the caller's thread.
    """

    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        on_progress: Optional[ProgressCallback] = None,
        *,
        engine: Optional[InferenceEngine] = None,
        **loader_kwargs: Any,
    ):
        self.settings = settings or config.get_settings()
        if engine is None:
            loaded = load_model(self.settings, on_progress, **loader_kwargs)
            engine = loaded.engine
        self.engine = engine

    def _predict(self, tensor: np.ndarray) -> Tuple[np.ndarray, float]:
        start = time.perf_counter()
        try:
            outputs = self.engine.predict({INPUT_NAME: tensor})
        except Exception as exc:  # noqa: BLE001
            raise InferenceError("Model prediction failed", exc) from exc
        elapsed = time.perf_counter() - start

        if not outputs or MASK_OUTPUT_NAME not in outputs:
            raise OutputCreationFailed(f"Failed to get model output '{MASK_OUTPUT_NAME}'")
        raw = np.asarray(outputs[MASK_OUTPUT_NAME])
        if raw.ndim < 2:
            raise OutputCreationFailed(f"Unexpected model output shape {raw.shape}")
        return raw, elapsed

    def _mask_for(self, raster: Image.Image) -> Tuple[Image.Image, float]:
        tensor = encode_image(raster)
        raw, elapsed = self._predict(tensor)
        # Output is [1, 1, S, S]; the spatial side is the second-to-last axis.
        mask = decode_mask(raw, side=int(raw.shape[-2]))
        return resize_mask(mask, raster.size), elapsed

    def remove_background(self, image: ImageSource) -> RemovalResult:
        raster = to_raster(image)
        mask, elapsed = self._mask_for(raster)
        cutout = apply_mask(mask, raster)
        logger.debug("removed background %sx%s in %.1f ms", raster.width, raster.height, elapsed * 1000)
        return RemovalResult(image=cutout, mask=mask, inference_time=elapsed)

    def generate_mask(self, image: ImageSource) -> Image.Image:
        """Return only the grayscale mask at the input's resolution."""
        mask, _ = self._mask_for(to_raster(image))
        return mask

    def apply_mask(self, mask: ImageSource, image: ImageSource) -> Optional[Image.Image]:
        """
        Apply a custom mask as the alpha channel of `image`.

        The mask is resized to the image first when needed. Returns None when
        either input cannot be rasterized or compositing fails.
        """
        try:
            raster = to_raster(image)
            mask_raster = resize_mask(to_raster(mask), raster.size)
            return apply_mask(mask_raster, raster)
        except (RMBGError, ValueError) as exc:
            logger.warning("apply_mask failed: %s", exc)
            return None

    def remove_background_batch(self, images: Iterable[ImageSource]) -> List[RemovalResult]:
        """
        Process images one after another.

        The first failure propagates and no partial results are returned.
        """
        results: List[RemovalResult] = []
        for image in images:
            results.append(self.remove_background(image))
        return results


_REMOVER: Optional[BackgroundRemover] = None
_LOCK = Lock()


def get_remover() -> BackgroundRemover:
    """
    Return the process-wide remover.

    The model is loaded once on first access and reused across requests or
    batch jobs.
    """
    global _REMOVER
    if _REMOVER is not None:
        return _REMOVER

    with _LOCK:
        if _REMOVER is None:
            _REMOVER = BackgroundRemover(config.get_settings())
    return _REMOVER


def process_image_bytes(
    image_bytes: bytes,
    output: str = OUTPUT_IMAGE,
    remover: Optional[BackgroundRemover] = None,
) -> Tuple[bytes, float]:
    """
    Full pipeline from raw bytes to PNG bytes.

    `output` selects the RGBA cut-out ("image") or the grayscale mask
    ("mask"). Returns the PNG and the inference time in seconds.

    Raises:
        InvalidImage: when input is not a decodable image or too large.
        ValueError: when `output` is unknown.
    """
    if output not in {OUTPUT_IMAGE, OUTPUT_MASK}:
        raise ValueError("output must be one of image | mask")

    settings = config.get_settings()
    raster = to_raster(image_bytes)
    if raster.width * raster.height > settings.max_image_pixels:
        raise InvalidImage(
            f"Image of {raster.width}x{raster.height} exceeds {settings.max_image_pixels} pixels"
        )

    remover = remover or get_remover()
    result = remover.remove_background(raster)
    chosen = result.image if output == OUTPUT_IMAGE else result.mask
    return encode_png(chosen), result.inference_time
