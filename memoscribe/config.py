"""
memoscribe.config - YAML config loading, engine defaults, validation.

Handles loading memoscribe.yaml, applying per-engine format defaults,
and validating all parameters.
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from memoscribe.exceptions import ConfigError
from memoscribe.models import SAMPLE_ENCODINGS, AudioFormat

CONFIG_FILENAME = "memoscribe.yaml"


class PipelineConfig(BaseModel):
    """Resolved configuration for the transcription pipeline."""

    engine_backend: str = "faster"
    model: str = "base"
    language: str | None = None
    device: str = "auto"
    compute_type: str = "default"

    # None means the backend's built-in format
    target_sample_rate: int | None = Field(default=None, gt=0)
    target_channels: int | None = Field(default=None, ge=1)
    target_encoding: str | None = None

    sentence_locale: str = "en"
    verbose: bool = False

    @field_validator("engine_backend")
    @classmethod
    def validate_engine_backend(cls, v: str) -> str:
        valid = set(BUILTIN_ENGINE_FORMATS)
        if v not in valid:
            raise ValueError(f"engine_backend must be one of: {valid}")
        return v

    @field_validator("target_encoding")
    @classmethod
    def validate_target_encoding(cls, v: str | None) -> str | None:
        if v is not None and v not in SAMPLE_ENCODINGS:
            raise ValueError(f"target_encoding must be one of: {set(SAMPLE_ENCODINGS)}")
        return v

    @model_validator(mode="after")
    def validate_fixed_format(self) -> PipelineConfig:
        if self.engine_backend in FIXED_FORMAT_BACKENDS:
            required = BUILTIN_ENGINE_FORMATS[self.engine_backend]
            resolved = self.target_format()
            if resolved != required:
                raise ValueError(
                    f"{self.engine_backend} backend only accepts {required}, got {resolved}"
                )
        return self

    def target_format(self) -> AudioFormat:
        """Sample format the normalizer must produce for the configured engine."""
        overrides = {
            "sample_rate": self.target_sample_rate,
            "channels": self.target_channels,
            "encoding": self.target_encoding,
        }
        defaults = asdict(BUILTIN_ENGINE_FORMATS[self.engine_backend])
        return AudioFormat(**merge_config(overrides, defaults))


BUILTIN_ENGINE_FORMATS: dict[str, AudioFormat] = {
    "faster": AudioFormat(sample_rate=16000, channels=1, encoding="float32"),
    "mlx": AudioFormat(sample_rate=16000, channels=1, encoding="float32"),
    "dictation": AudioFormat(sample_rate=16000, channels=1, encoding="int16"),
}

# Whisper models read 16 kHz mono float32 and nothing else
FIXED_FORMAT_BACKENDS = {"faster", "mlx"}


def merge_config(user_config: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    """Merge user values over engine defaults. Values that are None are ignored."""
    merged = defaults.copy()
    for key, value in user_config.items():
        if value is not None:
            merged[key] = value
    return merged


def load_config(path: Path) -> PipelineConfig:
    """Load and validate configuration from a file or a directory containing one.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    config_file = path / CONFIG_FILENAME if path.is_dir() else path
    if not config_file.exists():
        raise ConfigError(f"No {CONFIG_FILENAME} found at {path}")

    try:
        with open(config_file) as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError(f"{config_file} must contain a mapping")

    try:
        return PipelineConfig(**raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}: {e}") from e


def write_config(config: PipelineConfig | dict[str, Any], path: Path) -> None:
    """Write configuration to a YAML file."""
    data = config.model_dump() if isinstance(config, PipelineConfig) else config
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
