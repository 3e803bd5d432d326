"""
Fixed identifiers for the RMBG-2.0 Core ML model family.

Remote location, cache filenames per variant and the ImageNet normalization
constants the model was trained with all live here so the acquisition and
tensor code agree on them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

MODEL_INPUT_SIZE = 1024

HF_ORG = "VincentGOURBIN"
HF_REPO_NAME = "RMBG-2-CoreML"
HF_REPO = f"{HF_ORG}/{HF_REPO_NAME}"
MODEL_BASE_URL = f"https://huggingface.co/{HF_REPO}/resolve/main"

# Engine I/O names baked into the converted model.
INPUT_NAME = "input"
# output_3 is the full-resolution (1024x1024) matte, already passed through sigmoid.
MASK_OUTPUT_NAME = "output_3"

COMPILED_SUFFIX = ".mlmodelc"

NORMALIZATION_MEAN: Tuple[float, float, float] = (0.485, 0.456, 0.406)
NORMALIZATION_STD: Tuple[float, float, float] = (0.229, 0.224, 0.225)


class ModelVariant(str, Enum):
    """Precision variant of the model."""

    QUANTIZED = "quantized"  # INT8, ~233 MB
    FULL = "full"  # FP32, ~461 MB


class ComputeProfile(str, Enum):
    """Compute-unit preference handed to the execution engine."""

    PREFER_ACCELERATOR = "prefer-accelerator"
    CPU_AND_GPU = "cpu-and-gpu"
    CPU_ONLY = "cpu-only"


@dataclass(frozen=True)
class ModelFiles:
    package_filename: str
    compiled_filename: str

    @property
    def archive_filename(self) -> str:
        return f"{self.package_filename}.zip"


MODEL_FILES: Dict[ModelVariant, ModelFiles] = {
    ModelVariant.QUANTIZED: ModelFiles(
        package_filename="RMBG-2-native-int8.mlpackage",
        compiled_filename="RMBG-2-native-int8.mlmodelc",
    ),
    ModelVariant.FULL: ModelFiles(
        package_filename="RMBG-2-native.mlpackage",
        compiled_filename="RMBG-2-native.mlmodelc",
    ),
}


def model_files(variant: ModelVariant) -> ModelFiles:
    return MODEL_FILES[ModelVariant(variant)]
