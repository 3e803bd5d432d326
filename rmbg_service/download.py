"""
Model package download from the Hugging Face repository.

The package is first requested as a single zip archive. When the archive is
not published (HTTP 404), the package directory is rebuilt from its
individual files instead: the manifest, the model spec and the weights blob.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import List, Optional
import zipfile

import requests

from .constants import MODEL_BASE_URL, ModelVariant, model_files
from .errors import ModelDownloadFailed
from .progress import ProgressReporter

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10
DEFAULT_CHUNK_SIZE = 1024 * 1024

# Share of the progress bar covered by the archive transfer itself.
_ARCHIVE_PROGRESS_SPAN = 0.7

COREML_DATA_DIR = Path("Data") / "com.apple.CoreML"
STAGING_PREFIX = ".rmbg-download-"


@dataclass
class DownloadAttempt:
    strategy: str  # "archive" or "files"
    url: str
    status_code: Optional[int]
    succeeded: bool


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Failed to remove temporary file %s: %s", path, exc)


def _write_stream(
    response: requests.Response,
    dest: Path,
    chunk_size: int,
    progress: Optional[ProgressReporter] = None,
    progress_span: float = 0.0,
) -> int:
    """Stream a response body to `dest`, returning the number of bytes written."""
    total = int(response.headers.get("Content-Length") or 0)
    written = 0
    with dest.open("wb") as fh:
        for chunk in response.iter_content(chunk_size=chunk_size):
            if not chunk:
                continue
            fh.write(chunk)
            written += len(chunk)
            if progress is not None and total > 0:
                progress(progress_span * min(written / total, 1.0), "Downloading model...")
    return written


def fetch_file(
    session: requests.Session,
    url: str,
    dest: Path,
    timeout: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> None:
    """Download a single file, replacing `dest` only once the body is complete."""
    partial = dest.with_name(dest.name + ".part")
    try:
        response = session.get(url, stream=True, timeout=(CONNECT_TIMEOUT_SECONDS, timeout))
    except requests.RequestException as exc:
        raise ModelDownloadFailed(f"Request to {url} failed", exc) from exc

    with response:
        if not _is_success(response.status_code):
            raise ModelDownloadFailed(f"GET {url} returned HTTP {response.status_code}")
        try:
            _write_stream(response, partial, chunk_size)
            os.replace(partial, dest)
        except (requests.RequestException, OSError) as exc:
            _remove_quietly(partial)
            raise ModelDownloadFailed(f"Failed to save {url}", exc) from exc


def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    """Decompress a zip archive into `dest_dir`."""
    try:
        with zipfile.ZipFile(archive_path) as zf:
            zf.extractall(dest_dir)
    except (zipfile.BadZipFile, OSError) as exc:
        raise ModelDownloadFailed(f"Failed to extract {archive_path.name}", exc) from exc


def download_package_files(
    variant: ModelVariant,
    package_path: Path,
    session: requests.Session,
    progress: ProgressReporter,
    base_url: str = MODEL_BASE_URL,
    timeout: int = 300,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> DownloadAttempt:
    """Rebuild the package directory at `package_path` from its individual remote files."""
    files = model_files(variant)
    remote_root = f"{base_url}/{files.package_filename}"
    data_dir = package_path / COREML_DATA_DIR

    progress(0.1, "Downloading model files...")
    try:
        (data_dir / "weights").mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ModelDownloadFailed(f"Cannot create package directory {package_path}", exc) from exc

    fetch_file(session, f"{remote_root}/Manifest.json", package_path / "Manifest.json", timeout, chunk_size)

    progress(0.3, "Downloading model spec...")
    fetch_file(
        session,
        f"{remote_root}/{COREML_DATA_DIR.as_posix()}/model.mlmodel",
        data_dir / "model.mlmodel",
        timeout,
        chunk_size,
    )

    progress(0.6, "Downloading weights...")
    weights_url = f"{remote_root}/{COREML_DATA_DIR.as_posix()}/weights/weight.bin"
    try:
        fetch_file(session, weights_url, data_dir / "weights" / "weight.bin", timeout, chunk_size)
    except ModelDownloadFailed as exc:
        # Some packages embed their weights in the spec.
        logger.warning("Optional weights file not fetched: %s", exc)

    progress(0.9, "Model files downloaded")
    return DownloadAttempt(strategy="files", url=remote_root, status_code=None, succeeded=True)


def _download_archive(
    session: requests.Session,
    url: str,
    staging: Path,
    archive_filename: str,
    progress: ProgressReporter,
    timeout: int,
    chunk_size: int,
) -> int:
    """
    Stream the archive into `staging` and extract it there.

    Returns the HTTP status; a 404 means the archive is not published and
    nothing was written.
    """
    archive_path = staging / archive_filename
    try:
        response = session.get(url, stream=True, timeout=(CONNECT_TIMEOUT_SECONDS, timeout))
    except requests.RequestException as exc:
        raise ModelDownloadFailed(f"Request to {url} failed", exc) from exc

    with response:
        status = response.status_code
        if status == 404:
            return status
        if not _is_success(status):
            raise ModelDownloadFailed(f"GET {url} returned HTTP {status}")
        try:
            _write_stream(response, archive_path, chunk_size, progress, _ARCHIVE_PROGRESS_SPAN)
        except (requests.RequestException, OSError) as exc:
            raise ModelDownloadFailed(f"Failed to save {url}", exc) from exc

    progress(_ARCHIVE_PROGRESS_SPAN, "Extracting model...")
    try:
        extract_archive(archive_path, staging)
    finally:
        _remove_quietly(archive_path)
    return status


def download_package(
    variant: ModelVariant,
    cache_dir: Path,
    session: requests.Session,
    progress: ProgressReporter,
    base_url: str = MODEL_BASE_URL,
    timeout: int = 300,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> List[DownloadAttempt]:
    """
    Download the variant's package into `cache_dir`.

    The package is assembled in a hidden staging directory under `cache_dir`
    and renamed to its final name only once complete, so a failed download
    never leaves a package behind. Returns the attempts made, last one
    successful. Raises ModelDownloadFailed on any non-404 error status or
    transfer failure.
    """
    files = model_files(variant)
    package_path = cache_dir / files.package_filename
    url = f"{base_url}/{files.archive_filename}"

    try:
        staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=cache_dir))
    except OSError as exc:
        raise ModelDownloadFailed(f"Cannot create staging directory in {cache_dir}", exc) from exc

    try:
        progress(0.0, "Downloading model...")
        logger.info("Downloading model archive %s", url)
        status = _download_archive(session, url, staging, files.archive_filename, progress, timeout, chunk_size)

        if status != 404:
            if not (staging / files.package_filename).is_dir():
                raise ModelDownloadFailed(
                    f"Archive {files.archive_filename} did not contain {files.package_filename}"
                )
            attempts = [DownloadAttempt(strategy="archive", url=url, status_code=status, succeeded=True)]
            progress(0.9, "Model extracted")
        else:
            logger.warning("Model archive not found at %s, falling back to per-file download", url)
            attempts = [
                DownloadAttempt(strategy="archive", url=url, status_code=status, succeeded=False),
                download_package_files(
                    variant,
                    staging / files.package_filename,
                    session,
                    progress,
                    base_url=base_url,
                    timeout=timeout,
                    chunk_size=chunk_size,
                ),
            ]

        try:
            os.replace(staging / files.package_filename, package_path)
        except OSError as exc:
            raise ModelDownloadFailed(f"Failed to move package into {package_path}", exc) from exc
    finally:
        shutil.rmtree(staging, ignore_errors=True)
    return attempts
