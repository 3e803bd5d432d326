"""
Compilation of a Core ML package into its executable `.mlmodelc` form.

The compiler writes to a temporary directory; `compile_into` relocates the
result into the cache. An existing artifact is only replaced once the new one
has compiled, so a failed compile leaves it untouched. Replacement itself is
remove-then-move: a crash between the two steps leaves neither behind, and the
next acquisition sees the artifact as missing and redoes the work.
"""

from __future__ import annotations

import logging
from pathlib import Path
import shutil
import subprocess
import tempfile
from typing import Protocol

from .constants import COMPILED_SUFFIX
from .errors import ModelCompilationFailed

logger = logging.getLogger(__name__)


class ModelCompiler(Protocol):
    def compile(self, package_path: Path) -> Path:
        """Compile `package_path` and return the compiled artifact in a temporary location."""
        ...


class CoreMLCompiler:
    """Compile with Xcode's `coremlcompiler` (macOS only)."""

    def __init__(self, xcrun: str = "xcrun"):
        self.xcrun = xcrun

    def compile(self, package_path: Path) -> Path:
        output_dir = Path(tempfile.mkdtemp(prefix="rmbg-compile-"))
        cmd = [self.xcrun, "coremlcompiler", "compile", str(package_path), str(output_dir)]
        logger.debug("Running %s", " ".join(cmd))
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as exc:
            shutil.rmtree(output_dir, ignore_errors=True)
            raise RuntimeError("xcrun not found; compiling Core ML models requires macOS with Xcode") from exc
        except subprocess.CalledProcessError as exc:
            shutil.rmtree(output_dir, ignore_errors=True)
            detail = (exc.stderr or exc.stdout or "").strip()
            raise RuntimeError(f"coremlcompiler exited with status {exc.returncode}: {detail}") from exc

        compiled = output_dir / (package_path.stem + COMPILED_SUFFIX)
        if not compiled.exists():
            candidates = sorted(output_dir.glob(f"*{COMPILED_SUFFIX}"))
            if not candidates:
                raise RuntimeError(f"coremlcompiler produced no {COMPILED_SUFFIX} in {output_dir}")
            compiled = candidates[0]
        return compiled


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _remove_empty_dir(path: Path) -> None:
    try:
        path.rmdir()
    except OSError as exc:
        logger.debug("Left compiler output directory %s in place: %s", path, exc)


def compile_into(package_path: Path, destination: Path, compiler: ModelCompiler) -> Path:
    """
    Compile `package_path` and move the result to `destination`.

    Any existing file or directory at `destination` is replaced, but only after
    the compile succeeded.
    """
    logger.info("Compiling %s -> %s", package_path, destination)
    try:
        compiled = Path(compiler.compile(package_path))
        if destination.exists() or destination.is_symlink():
            _remove_path(destination)
        shutil.move(str(compiled), str(destination))
    except Exception as exc:  # noqa: BLE001
        raise ModelCompilationFailed(f"Failed to compile {package_path.name}", exc) from exc
    _remove_empty_dir(compiled.parent)
    return destination
