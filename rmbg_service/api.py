"""
FastAPI layer exposing RMBG-2.0 background removal.

Endpoints:
 - GET /health
 - GET /cache
 - DELETE /cache
 - POST /remove-bg
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, HttpUrl
import requests

from . import config
from .cache import clear_cache, default_cache_root
from .errors import (
    CacheUnavailable,
    ImageProcessingFailed,
    InvalidImage,
    ModelCompilationFailed,
    ModelDownloadFailed,
    ModelLoadFailed,
    ModelNotFound,
    RMBGError,
)
from .model_loader import cache_info
from .pipeline import OUTPUT_IMAGE, process_image_bytes

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="RMBG-2.0 Background Removal Service", version="0.1.0")

_MODEL_UNAVAILABLE = (
    CacheUnavailable,
    ModelNotFound,
    ModelDownloadFailed,
    ModelCompilationFailed,
    ModelLoadFailed,
)


class RemoveBgRequest(BaseModel):
    imageUrl: HttpUrl
    output: Literal["image", "mask"] = OUTPUT_IMAGE


class CacheInfoResponse(BaseModel):
    cacheDir: str
    variant: str
    state: str
    compiledPath: str
    packagePath: str


class CacheClearResponse(BaseModel):
    cleared: bool
    status: str


def _download_image(url: str) -> bytes:
    resp = requests.get(url, timeout=(5, settings.request_timeout_seconds))
    resp.raise_for_status()
    return resp.content


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/cache", response_model=CacheInfoResponse)
def get_cache():
    try:
        status = cache_info(settings)
    except CacheUnavailable as exc:
        logger.exception("Cache directory unavailable: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return CacheInfoResponse(
        cacheDir=str(status.cache_dir),
        variant=settings.rmbg_model_variant.value,
        state=status.state.value,
        compiledPath=str(status.compiled_path),
        packagePath=str(status.package_path),
    )


@app.delete("/cache", response_model=CacheClearResponse)
def delete_cache():
    cache_dir = settings.rmbg_cache_dir or default_cache_root()
    try:
        cleared = clear_cache(cache_dir)
    except CacheUnavailable as exc:
        logger.exception("Failed to clear cache: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return CacheClearResponse(cleared=cleared, status="cleared" if cleared else "already_empty")


@app.post("/remove-bg")
def remove_bg(body: RemoveBgRequest):
    try:
        image_bytes = _download_image(str(body.imageUrl))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to download image: %s", exc)
        raise HTTPException(status_code=400, detail="Could not download image") from exc

    try:
        png_bytes, inference_time = process_image_bytes(image_bytes, output=body.output)
    except (InvalidImage, ImageProcessingFailed) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except _MODEL_UNAVAILABLE as exc:
        logger.exception("Model unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Model unavailable") from exc
    except RMBGError as exc:
        logger.exception("Background removal failed: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc

    return Response(
        content=png_bytes,
        media_type="image/png",
        headers={"X-Inference-Time-Ms": f"{inference_time * 1000:.2f}"},
    )
