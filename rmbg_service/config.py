"""
Configuration loader for the RMBG background-removal service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear. Field names
double as environment variable names (case-insensitive).
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import MODEL_BASE_URL, ComputeProfile, ModelVariant


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Model selection
    rmbg_model_variant: ModelVariant = Field(ModelVariant.QUANTIZED)
    rmbg_compute_profile: ComputeProfile = Field(ComputeProfile.PREFER_ACCELERATOR)
    rmbg_model_path: Optional[Path] = Field(None)
    rmbg_cache_dir: Optional[Path] = Field(None)

    # Model download
    rmbg_model_base_url: str = Field(MODEL_BASE_URL)
    download_timeout_seconds: int = Field(300)
    download_chunk_size: int = Field(1024 * 1024)

    # API
    request_timeout_seconds: int = Field(30)
    max_image_pixels: int = Field(40_000_000)
    log_level: str = Field("INFO")

    @field_validator("rmbg_model_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("RMBG_MODEL_BASE_URL must be an http(s) URL")
        return v.rstrip("/")

    @field_validator(
        "download_timeout_seconds",
        "download_chunk_size",
        "request_timeout_seconds",
        "max_image_pixels",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
