"""
Model loading utilities for RMBG-2.0.

The loader:
 - resolves the cache directory from settings,
 - makes sure a compiled model exists there (downloading/compiling on first use),
 - loads it into the Core ML engine with the configured compute profile.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Optional

import requests

from . import config
from .acquisition import ensure_compiled_model
from .cache import CacheStatus, inspect_artifact, resolve_cache_root
from .compiler import ModelCompiler
from .engine import InferenceEngine, load_engine
from .progress import ProgressCallback

logger = logging.getLogger(__name__)


@dataclass
class LoadedModel:
    engine: InferenceEngine
    compiled_path: Path


def acquire_model(
    settings: config.Settings,
    on_progress: Optional[ProgressCallback] = None,
    *,
    session: Optional[requests.Session] = None,
    compiler: Optional[ModelCompiler] = None,
) -> Path:
    """Return the compiled model path for the configured variant."""
    cache_dir = resolve_cache_root(settings.rmbg_cache_dir)
    return ensure_compiled_model(
        settings.rmbg_model_variant,
        cache_dir,
        custom_model_path=settings.rmbg_model_path,
        on_progress=on_progress,
        session=session,
        compiler=compiler,
        base_url=settings.rmbg_model_base_url,
        timeout=settings.download_timeout_seconds,
        chunk_size=settings.download_chunk_size,
    )


def load_model(
    settings: config.Settings,
    on_progress: Optional[ProgressCallback] = None,
    *,
    session: Optional[requests.Session] = None,
    compiler: Optional[ModelCompiler] = None,
) -> LoadedModel:
    compiled_path = acquire_model(settings, on_progress, session=session, compiler=compiler)
    engine = load_engine(compiled_path, settings.rmbg_compute_profile)
    logger.info(
        "RMBG-2.0 (%s) loaded from %s",
        settings.rmbg_model_variant.value,
        compiled_path,
    )
    return LoadedModel(engine=engine, compiled_path=compiled_path)


def cache_info(settings: Optional[config.Settings] = None) -> CacheStatus:
    """Describe the cache directory and the configured variant's artifact state."""
    settings = settings or config.get_settings()
    cache_dir = resolve_cache_root(settings.rmbg_cache_dir)
    return inspect_artifact(settings.rmbg_model_variant, cache_dir)
