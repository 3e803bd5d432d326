from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Union
import zipfile

import numpy as np
import pytest
import requests

from rmbg_service.constants import MASK_OUTPUT_NAME


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b"", headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers if headers is not None else {"Content-Length": str(len(content))}
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FakeSession:
    """Serves canned responses by URL; unknown URLs get a 404."""

    def __init__(self, routes: Optional[Dict[str, Union[FakeResponse, Exception]]] = None):
        self.routes = routes or {}
        self.calls: List[str] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append(url)
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            return FakeResponse(status_code=404)
        return route

    def close(self) -> None:
        pass


class FakeCompiler:
    """Stands in for coremlcompiler: produces `<stem>.mlmodelc` in a scratch dir."""

    def __init__(self, scratch: Path, fail: Optional[Exception] = None):
        self.scratch = scratch
        self.fail = fail
        self.calls: List[Path] = []

    def compile(self, package_path: Path) -> Path:
        self.calls.append(Path(package_path))
        if self.fail is not None:
            raise self.fail
        if not (Path(package_path) / "Manifest.json").is_file():
            raise RuntimeError(f"{package_path} is not a model package")
        out_dir = self.scratch / f"compile-{len(self.calls)}"
        compiled = out_dir / (Path(package_path).stem + ".mlmodelc")
        compiled.mkdir(parents=True)
        (compiled / "model.espresso.net").write_text("compiled")
        return compiled


class FakeEngine:
    """Returns a fixed matte regardless of input; records the tensors it saw."""

    def __init__(self, matte: np.ndarray, fail: Optional[Exception] = None, output_name: str = MASK_OUTPUT_NAME):
        self.matte = matte
        self.fail = fail
        self.output_name = output_name
        self.inputs: List[Dict[str, np.ndarray]] = []

    def predict(self, inputs):
        self.inputs.append(inputs)
        if self.fail is not None:
            raise self.fail
        return {self.output_name: self.matte}


def build_package_zip(package_filename: str, with_weights: bool = True) -> bytes:
    buf = BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(f"{package_filename}/Manifest.json", '{"fileFormatVersion": "1.0.0"}')
        zf.writestr(f"{package_filename}/Data/com.apple.CoreML/model.mlmodel", b"spec")
        if with_weights:
            zf.writestr(f"{package_filename}/Data/com.apple.CoreML/weights/weight.bin", b"\x00" * 64)
    return buf.getvalue()


@pytest.fixture
def fake_compiler(tmp_path: Path) -> FakeCompiler:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return FakeCompiler(scratch)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def no_network(monkeypatch: pytest.MonkeyPatch) -> None:
    def _blocked(*args, **kwargs):
        raise AssertionError("network access attempted")

    monkeypatch.setattr(requests.Session, "get", _blocked)
