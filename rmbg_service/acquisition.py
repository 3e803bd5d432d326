"""
Acquisition of a compiled, ready-to-load model in the local cache.

`ensure_compiled_model` walks the artifact state machine
(missing -> package present -> compiled present) and stops at the first
step that yields a compiled artifact. State comes only from filesystem
checks, so a call that finds the compiled artifact never repeats work.

Within one process, acquisitions of the same artifact are serialized by a
per-(cache dir, variant) lock; a second caller waits and then takes the
cache-hit path. Separate processes sharing a cache are not coordinated and
the last compile wins.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Tuple

import requests

from .cache import ArtifactState, inspect_artifact
from .compiler import CoreMLCompiler, ModelCompiler, compile_into
from .constants import COMPILED_SUFFIX, MODEL_BASE_URL, ModelVariant, model_files
from .download import DEFAULT_CHUNK_SIZE, download_package
from .errors import ModelNotFound
from .progress import ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)

_GUARDS: Dict[Tuple[str, str], Lock] = {}
_GUARDS_LOCK = Lock()


def _guard_for(cache_dir: Path, variant: ModelVariant) -> Lock:
    key = (str(cache_dir.resolve()), ModelVariant(variant).value)
    with _GUARDS_LOCK:
        guard = _GUARDS.get(key)
        if guard is None:
            guard = _GUARDS[key] = Lock()
    return guard


def ensure_compiled_model(
    variant: ModelVariant,
    cache_dir: Path,
    custom_model_path: Optional[Path] = None,
    on_progress: Optional[ProgressCallback] = None,
    *,
    session: Optional[requests.Session] = None,
    compiler: Optional[ModelCompiler] = None,
    base_url: str = MODEL_BASE_URL,
    timeout: int = 300,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Path:
    """
    Return the path of a compiled model for `variant`, producing it if needed.

    Order of preference:
     1. `custom_model_path` (used as-is when already compiled, otherwise
        compiled into the cache unless a compiled copy is already there),
     2. compiled artifact in the cache,
     3. package in the cache, compiled in place,
     4. package downloaded then compiled.
    """
    variant = ModelVariant(variant)
    progress = ProgressReporter(on_progress)
    compiler = compiler or CoreMLCompiler()
    files = model_files(variant)

    if custom_model_path is not None:
        custom_model_path = Path(custom_model_path)
        if not custom_model_path.exists():
            raise ModelNotFound(f"Model not found at: {custom_model_path}")
        if custom_model_path.suffix == COMPILED_SUFFIX:
            progress(1.0, "Using provided compiled model")
            return custom_model_path

        compiled_path = cache_dir / files.compiled_filename
        with _guard_for(cache_dir, variant):
            if compiled_path.exists():
                progress(1.0, "Using cached model")
                return compiled_path
            progress(0.9, "Compiling model...")
            compile_into(custom_model_path, compiled_path, compiler)
        progress(1.0, "Model ready")
        return compiled_path

    with _guard_for(cache_dir, variant):
        status = inspect_artifact(variant, cache_dir)
        logger.info("Model %s cache state: %s (%s)", variant.value, status.state.value, cache_dir)

        if status.state is ArtifactState.COMPILED_PRESENT:
            progress(1.0, "Using cached model")
            return status.compiled_path

        if status.state is ArtifactState.MISSING:
            own_session = session is None
            http = session or requests.Session()
            try:
                attempts = download_package(
                    variant,
                    cache_dir,
                    http,
                    progress,
                    base_url=base_url,
                    timeout=timeout,
                    chunk_size=chunk_size,
                )
            finally:
                if own_session:
                    http.close()
            logger.info("Model package downloaded via %s", attempts[-1].strategy)
        else:
            progress(0.5, "Compiling cached model...")

        progress(0.9, "Compiling model...")
        compile_into(status.package_path, status.compiled_path, compiler)

    progress(1.0, "Model ready")
    return status.compiled_path
