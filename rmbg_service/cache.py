"""
On-disk cache location and artifact state for the Core ML model.

The cache root is an explicit value handed to every acquisition call. The
default location is a pure function of the organization, the repository and
the platform cache root; it is only created when resolved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import os
from pathlib import Path
import shutil
import sys
from typing import Optional

from .constants import HF_ORG, HF_REPO_NAME, ModelVariant, model_files
from .errors import CacheUnavailable

logger = logging.getLogger(__name__)


class ArtifactState(str, Enum):
    MISSING = "missing"
    PACKAGE_PRESENT = "package_present"
    COMPILED_PRESENT = "compiled_present"


@dataclass
class CacheStatus:
    cache_dir: Path
    state: ArtifactState
    package_path: Path
    compiled_path: Path


def platform_cache_root() -> Path:
    """Standard per-user cache directory for the current platform."""
    xdg = os.getenv("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg).expanduser()
    if sys.platform == "darwin":
        return Path("~/Library/Caches").expanduser()
    return Path("~/.cache").expanduser()


def default_cache_root(
    org: str = HF_ORG,
    repo: str = HF_REPO_NAME,
    cache_root: Optional[Path] = None,
) -> Path:
    """Return `<cache_root>/models/<org>/<repo>` without touching the filesystem."""
    base = cache_root if cache_root is not None else platform_cache_root()
    return Path(base) / "models" / org / repo


def resolve_cache_root(override: Optional[Path] = None) -> Path:
    """
    Return a cache directory that exists, creating it if needed.

    An override is returned unchanged once it exists; otherwise the default
    location is used. Never deletes anything.
    """
    cache_dir = Path(override) if override is not None else default_cache_root()
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CacheUnavailable(f"Cannot create cache directory {cache_dir}", exc) from exc
    if not os.access(cache_dir, os.W_OK):
        raise CacheUnavailable(f"Cache directory is not writable: {cache_dir}")
    return cache_dir


def inspect_artifact(variant: ModelVariant, cache_dir: Path) -> CacheStatus:
    files = model_files(variant)
    package_path = cache_dir / files.package_filename
    compiled_path = cache_dir / files.compiled_filename

    if compiled_path.exists():
        state = ArtifactState.COMPILED_PRESENT
    elif package_path.exists():
        state = ArtifactState.PACKAGE_PRESENT
    else:
        state = ArtifactState.MISSING

    return CacheStatus(
        cache_dir=cache_dir,
        state=state,
        package_path=package_path,
        compiled_path=compiled_path,
    )


def clear_cache(cache_dir: Path) -> bool:
    """
    Recursively delete the cache directory.

    Returns True when something was removed, False when it was already empty
    (i.e. did not exist).
    """
    cache_dir = Path(cache_dir)
    if not cache_dir.exists():
        return False
    try:
        shutil.rmtree(cache_dir)
    except OSError as exc:
        raise CacheUnavailable(f"Failed to clear cache directory {cache_dir}", exc) from exc
    logger.info("Cleared model cache at %s", cache_dir)
    return True
