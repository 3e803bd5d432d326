from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import List

import numpy as np
import pytest
from PIL import Image

import rmbg_service.model_loader as model_loader
import rmbg_service.pipeline as pipeline
from conftest import FakeCompiler, FakeEngine, FakeResponse, FakeSession, build_package_zip
from rmbg_service.config import Settings
from rmbg_service.constants import INPUT_NAME, MODEL_BASE_URL, MODEL_INPUT_SIZE, ComputeProfile, ModelVariant, model_files
from rmbg_service.errors import InferenceError, InvalidImage, OutputCreationFailed
from rmbg_service.model_loader import LoadedModel
from rmbg_service.pipeline import BackgroundRemover, process_image_bytes


def _settings(tmp_path: Path, **overrides) -> Settings:
    return Settings(rmbg_cache_dir=tmp_path / "cache", **overrides)


def _matte(side: int = 8, value: float = 0.75) -> np.ndarray:
    return np.full((1, 1, side, side), value, dtype=np.float32)


def _photo(width: int = 40, height: int = 30) -> Image.Image:
    rng = np.random.default_rng(7)
    return Image.fromarray(rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8))


def test_remove_background_end_to_end(tmp_path: Path) -> None:
    engine = FakeEngine(_matte())
    remover = BackgroundRemover(_settings(tmp_path), engine=engine)
    photo = _photo()

    result = remover.remove_background(photo)

    assert result.image.mode == "RGBA"
    assert result.image.size == photo.size
    assert result.mask.size == photo.size
    out = np.asarray(result.image)
    assert np.array_equal(out[..., 3], np.asarray(result.mask))
    assert np.array_equal(out[..., :3], np.asarray(photo))
    assert np.all(np.asarray(result.mask) == 191)
    assert result.inference_time >= 0

    (inputs,) = engine.inputs
    assert list(inputs) == [INPUT_NAME]
    assert inputs[INPUT_NAME].shape == (1, 3, MODEL_INPUT_SIZE, MODEL_INPUT_SIZE)
    assert inputs[INPUT_NAME].dtype == np.float32


def test_out_of_range_output_is_clamped(tmp_path: Path) -> None:
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte(value=1.7)))
    assert np.all(np.asarray(remover.generate_mask(_photo())) == 255)

    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte(value=-0.3)))
    assert np.all(np.asarray(remover.generate_mask(_photo())) == 0)


def test_inference_time_covers_engine_call_only(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    ticks = iter([100.0, 100.25])
    monkeypatch.setattr(pipeline.time, "perf_counter", lambda: next(ticks, 100.25))
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte()))
    assert remover.remove_background(_photo()).inference_time == pytest.approx(0.25)


def test_engine_failure_raises_inference_error(tmp_path: Path) -> None:
    cause = RuntimeError("ANE busy")
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte(), fail=cause))
    with pytest.raises(InferenceError) as excinfo:
        remover.remove_background(_photo())
    assert excinfo.value.underlying is cause


def test_missing_output_raises_output_creation_failed(tmp_path: Path) -> None:
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte(), output_name="output_0"))
    with pytest.raises(OutputCreationFailed, match="output_3"):
        remover.remove_background(_photo())


def test_invalid_input_raises_invalid_image(tmp_path: Path) -> None:
    engine = FakeEngine(_matte())
    remover = BackgroundRemover(_settings(tmp_path), engine=engine)
    with pytest.raises(InvalidImage):
        remover.remove_background(b"nope")
    assert engine.inputs == []


def test_generate_mask_matches_input_size(tmp_path: Path) -> None:
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte(side=16)))
    mask = remover.generate_mask(_photo(123, 45))
    assert mask.mode == "L"
    assert mask.size == (123, 45)


def test_public_apply_mask_resizes_and_returns_none_on_failure(tmp_path: Path) -> None:
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte()))
    photo = _photo(20, 10)
    small_mask = Image.new("L", (5, 5), 128)

    result = remover.apply_mask(small_mask, photo)

    assert result is not None
    assert result.size == (20, 10)
    assert np.all(np.asarray(result)[..., 3] == 128)
    assert remover.apply_mask(b"garbage", photo) is None


def test_batch_is_sequential_and_aborts_on_first_failure(tmp_path: Path) -> None:
    engine = FakeEngine(_matte())
    remover = BackgroundRemover(_settings(tmp_path), engine=engine)

    results = remover.remove_background_batch([_photo(), _photo(10, 10)])
    assert [r.image.size for r in results] == [(40, 30), (10, 10)]

    engine.inputs.clear()
    with pytest.raises(InvalidImage):
        remover.remove_background_batch([_photo(), b"broken", _photo()])
    assert len(engine.inputs) == 1


def test_remover_acquires_and_loads_model(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    files = model_files(ModelVariant.QUANTIZED)
    session = FakeSession(
        {f"{MODEL_BASE_URL}/{files.archive_filename}": FakeResponse(200, build_package_zip(files.package_filename))}
    )
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    compiler = FakeCompiler(scratch)
    engine = FakeEngine(_matte())
    loaded: List[tuple] = []

    def fake_load_engine(path, profile):
        loaded.append((path, profile))
        return engine

    monkeypatch.setattr(model_loader, "load_engine", fake_load_engine)
    progress: List[float] = []
    settings = _settings(tmp_path, rmbg_compute_profile=ComputeProfile.CPU_ONLY)

    remover = BackgroundRemover(
        settings,
        on_progress=lambda fraction, label: progress.append(fraction),
        session=session,
        compiler=compiler,
    )

    assert remover.engine is engine
    assert loaded == [(tmp_path / "cache" / files.compiled_filename, ComputeProfile.CPU_ONLY)]
    assert progress[-1] == 1.0


def test_process_image_bytes_returns_png(tmp_path: Path) -> None:
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte()))
    buf = BytesIO()
    _photo().save(buf, format="PNG")

    png, elapsed = process_image_bytes(buf.getvalue(), remover=remover)
    mask_png, _ = process_image_bytes(buf.getvalue(), output="mask", remover=remover)

    assert Image.open(BytesIO(png)).mode == "RGBA"
    assert Image.open(BytesIO(mask_png)).mode == "L"
    assert elapsed >= 0


def test_process_image_bytes_rejects_oversized(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(pipeline.config, "get_settings", lambda: _settings(tmp_path, max_image_pixels=100))
    remover = BackgroundRemover(_settings(tmp_path), engine=FakeEngine(_matte()))
    buf = BytesIO()
    _photo(20, 20).save(buf, format="PNG")
    with pytest.raises(InvalidImage, match="exceeds"):
        process_image_bytes(buf.getvalue(), remover=remover)


def test_process_image_bytes_rejects_unknown_output() -> None:
    with pytest.raises(ValueError):
        process_image_bytes(b"", output="both")


def test_get_remover_loads_once(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    created: List[object] = []

    def fake_load_model(settings, on_progress=None, **kwargs):
        created.append(settings)
        return LoadedModel(engine=FakeEngine(_matte()), compiled_path=tmp_path / "x.mlmodelc")

    monkeypatch.setattr(pipeline, "load_model", fake_load_model)
    monkeypatch.setattr(pipeline.config, "get_settings", lambda: _settings(tmp_path))
    monkeypatch.setattr(pipeline, "_REMOVER", None)

    first = pipeline.get_remover()
    second = pipeline.get_remover()

    assert first is second
    assert len(created) == 1
