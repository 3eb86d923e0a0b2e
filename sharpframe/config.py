from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "SHARPFRAME_"

logger = logging.getLogger(__name__)


class PipelineSettings(BaseModel):
    output_dir: Path = Path("data/outputs")
    cache_dir: Path = Path("data/cache")


class AnalysisSettings(BaseModel):
    stride: int = Field(default=1, ge=1)
    # <= 0 means one worker per available CPU
    parallelism: int = 0
    backend: Literal["numpy", "opencv"] = "numpy"
    suggested_percentile: float = Field(default=75.0, gt=0.0, lt=100.0)


class SelectionSettings(BaseModel):
    mode: Literal["threshold", "batch", "best_n", "top_percentage"] = "threshold"
    threshold: float | None = None
    min_distance: int = Field(default=5, ge=1)
    max_frames: int | None = None
    batch_size: int = Field(default=5, ge=2)
    batch_buffer: int = Field(default=0, ge=0)
    best_n: int = Field(default=100, ge=1)
    top_percentage: float = Field(default=25.0, ge=1.0, le=100.0)


class ExportSettings(BaseModel):
    image_format: Literal["png", "jpg"] = "png"
    jpeg_quality: int = Field(default=95, ge=1, le=100)


class DecoderSettings(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    hwaccel: str | None = None
    timeout_seconds: int = 60


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    decoder: DecoderSettings = Field(default_factory=DecoderSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    elif resolved_path == DEFAULT_CONFIG_PATH:
        raw_config = {}
    else:
        raise FileNotFoundError(f"Config file not found: {resolved_path}")

    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        if not _apply_override(data, path, raw_value):
            logger.debug("Ignoring unknown settings override %s", key)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> bool:
    *sections, final_key = path
    current: Any = data
    for segment in sections:
        current = current.get(segment) if isinstance(current, dict) else None

    if not isinstance(current, dict) or final_key not in current:
        return False

    current[final_key] = _coerce_value(raw_value, current[final_key])
    return True


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if existing_value is None:
        return None if raw_value.strip().lower() in {"", "none", "null"} else raw_value
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
