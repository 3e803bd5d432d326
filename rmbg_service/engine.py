"""
Core ML execution engine adapter.

`coremltools` is imported lazily so the rest of the package (and its tests)
works on machines without it; loading a compiled model needs macOS.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Protocol

import numpy as np

from .constants import ComputeProfile
from .errors import ModelLoadFailed

logger = logging.getLogger(__name__)


class InferenceEngine(Protocol):
    def predict(self, inputs: Dict[str, np.ndarray]) -> Dict[str, Any]:
        ...


def _load_coremltools() -> Any:
    import coremltools  # type: ignore[import-not-found]

    return coremltools


def compute_units_for(profile: ComputeProfile, ct: Any = None) -> Any:
    """Map a compute profile onto `coremltools.ComputeUnit`."""
    ct = ct or _load_coremltools()
    mapping = {
        ComputeProfile.PREFER_ACCELERATOR: ct.ComputeUnit.ALL,
        ComputeProfile.CPU_AND_GPU: ct.ComputeUnit.CPU_AND_GPU,
        ComputeProfile.CPU_ONLY: ct.ComputeUnit.CPU_ONLY,
    }
    return mapping[ComputeProfile(profile)]


def load_engine(compiled_path: Path, profile: ComputeProfile) -> InferenceEngine:
    """Load a compiled `.mlmodelc` with the requested compute units."""
    try:
        ct = _load_coremltools()
        model = ct.models.CompiledMLModel(str(compiled_path), compute_units=compute_units_for(profile, ct))
    except Exception as exc:  # noqa: BLE001
        raise ModelLoadFailed(f"Failed to load model from {compiled_path}", exc) from exc
    logger.info("Loaded %s with compute profile %s", compiled_path.name, ComputeProfile(profile).value)
    return model
