"""Typed errors raised by the background-removal service."""

from __future__ import annotations

from typing import Optional


class RMBGError(Exception):
    """Base error; keeps the underlying cause around for callers that log it."""

    def __init__(self, message: str, underlying: Optional[BaseException] = None):
        if underlying is not None:
            message = f"{message}: {underlying}"
        super().__init__(message)
        self.underlying = underlying


class CacheUnavailable(RMBGError):
    """Raised when the cache directory cannot be created or accessed."""


class ModelNotFound(RMBGError):
    """Raised when a custom model path does not exist."""


class ModelDownloadFailed(RMBGError):
    """Raised when neither the archive nor the per-file download succeeds."""


class ModelCompilationFailed(RMBGError):
    """Raised when a model package cannot be compiled."""


class ModelLoadFailed(RMBGError):
    """Raised when the execution engine cannot load the compiled model."""


class ImageProcessingFailed(RMBGError):
    """Raised when an input image cannot be rasterized or resized for encoding."""


class InferenceError(RMBGError):
    """Raised when the execution engine fails during prediction."""


class OutputCreationFailed(RMBGError):
    """Raised when the model output cannot be turned into a mask or cut-out."""


class InvalidImage(RMBGError):
    """Raised when an input cannot be converted to a raster image."""
