"""Configuration dataclasses and loading helpers for the loop export pipeline."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from loop_export.models import ExportJob, QualityProfile, SourceImageRef
from loop_export.transcoder import DEFAULT_QUALITY_PROFILES

ENV_PREFIX = "LOOP_EXPORT_"
DEFAULT_SIZE_BUDGET_BYTES = 8 * 1024 * 1024


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse truthy/falsy values from multiple input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return value != 0
    return default


def _parse_positive_int(value: Any, default: int) -> int:
    """Parse a positive integer with fallback to default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_non_negative_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _parse_positive_float(value: Any, default: float) -> float:
    """Parse a positive floating point number with fallback to default."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def parse_byte_size(value: Any, default: int) -> int:
    """Parse byte counts given as integers or strings such as ``"8MiB"`` or ``"7.5MB"``."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value) if value > 0 else default
    if not isinstance(value, str):
        return default
    match = re.fullmatch(r"\s*([0-9]*\.?[0-9]+)\s*([kKmMgG]i?[bB]?|[bB])?\s*", value)
    if not match:
        return default
    number = float(match.group(1))
    unit = (match.group(2) or "b").lower().rstrip("b")
    multipliers = {
        "": 1,
        "k": 1000,
        "ki": 1024,
        "m": 1000 ** 2,
        "mi": 1024 ** 2,
        "g": 1000 ** 3,
        "gi": 1024 ** 3,
    }
    parsed = int(number * multipliers[unit])
    return parsed if parsed > 0 else default


def parse_frame_size(value: Any, default: Tuple[int, int]) -> Tuple[int, int]:
    """Parse ``"WIDTHxHEIGHT"`` strings or two-item sequences."""
    if isinstance(value, str):
        parts = value.lower().split("x")
        if len(parts) != 2:
            return default
        value = parts
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return default
    width = _parse_positive_int(value[0], 0)
    height = _parse_positive_int(value[1], 0)
    if width == 0 or height == 0:
        return default
    return (width, height)


def _parse_quality_profiles(raw: Any) -> Tuple[QualityProfile, ...]:
    if not isinstance(raw, (list, tuple)):
        return DEFAULT_QUALITY_PROFILES
    profiles = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            continue
        crf = _parse_non_negative_int(entry.get("crf", entry.get("compression_level")), -1)
        if crf < 0:
            continue
        profiles.append(
            QualityProfile(
                name=str(entry.get("name") or f"profile-{index + 1}"),
                compression_level=crf,
                encoding_preset=str(entry.get("preset", entry.get("encoding_preset", "medium"))),
            )
        )
    return tuple(profiles) or DEFAULT_QUALITY_PROFILES


@dataclass(frozen=True)
class CaptureSettings:
    """Settings for frame capture and the intermediate encode."""

    threaded: bool = True
    queue_size: int = 8
    intermediate_crf: int = 16
    intermediate_preset: str = "veryfast"


@dataclass(frozen=True)
class TranscodeSettings:
    """Settings for the final budget-driven encode."""

    ffmpeg_binary: str = "ffmpeg"
    quality_profiles: Tuple[QualityProfile, ...] = DEFAULT_QUALITY_PROFILES


@dataclass(frozen=True)
class ExportSettings:
    """Top-level defaults applied to every export job."""

    frame_rate: float = 30.0
    output_size: Tuple[int, int] = (1080, 1920)
    min_duration: float = 3.0
    max_duration: float = 8.0
    default_duration: float = 7.5
    size_budget_bytes: int = DEFAULT_SIZE_BUDGET_BYTES
    preset: str = "special-one-v3"
    seed: int = 0
    log_file: Optional[Path] = None
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    transcode: TranscodeSettings = field(default_factory=TranscodeSettings)

    def make_job(self, source_image: SourceImageRef, **overrides: Any) -> ExportJob:
        """Build an `ExportJob` from these defaults; ``None`` overrides are ignored."""
        values = {
            "duration_seconds": self.default_duration,
            "frame_rate": self.frame_rate,
            "output_size": self.output_size,
            "size_budget_bytes": self.size_budget_bytes,
            "preset": self.preset,
            "seed": self.seed,
            "quality_profiles": self.transcode.quality_profiles,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return ExportJob(source_image=source_image, **values)


def _parse_capture_settings(raw: Mapping[str, Any]) -> CaptureSettings:
    default = CaptureSettings()
    if not isinstance(raw, Mapping):
        return default
    return CaptureSettings(
        threaded=_parse_bool(raw.get("threaded"), default.threaded),
        queue_size=_parse_positive_int(raw.get("queue_size"), default.queue_size),
        intermediate_crf=_parse_non_negative_int(raw.get("intermediate_crf"), default.intermediate_crf),
        intermediate_preset=str(raw.get("intermediate_preset") or default.intermediate_preset),
    )


def _parse_transcode_settings(raw: Mapping[str, Any]) -> TranscodeSettings:
    default = TranscodeSettings()
    if not isinstance(raw, Mapping):
        return default
    return TranscodeSettings(
        ffmpeg_binary=str(raw.get("ffmpeg_binary") or default.ffmpeg_binary),
        quality_profiles=_parse_quality_profiles(raw.get("quality_profiles")),
    )


def _parse_export_settings(data: Mapping[str, Any]) -> ExportSettings:
    default = ExportSettings()
    min_duration = _parse_positive_float(data.get("min_duration"), default.min_duration)
    max_duration = _parse_positive_float(data.get("max_duration"), default.max_duration)
    if max_duration < min_duration:
        min_duration, max_duration = default.min_duration, default.max_duration
    default_duration = _parse_positive_float(data.get("default_duration"), default.default_duration)
    default_duration = max(min_duration, min(max_duration, default_duration))
    log_file = data.get("log_file")

    return ExportSettings(
        frame_rate=_parse_positive_float(data.get("frame_rate"), default.frame_rate),
        output_size=parse_frame_size(data.get("output_size"), default.output_size),
        min_duration=min_duration,
        max_duration=max_duration,
        default_duration=default_duration,
        size_budget_bytes=parse_byte_size(data.get("size_budget"), default.size_budget_bytes),
        preset=str(data.get("preset") or default.preset),
        seed=_parse_non_negative_int(data.get("seed"), default.seed),
        log_file=Path(log_file) if log_file else None,
        capture=_parse_capture_settings(data.get("capture", {})),
        transcode=_parse_transcode_settings(data.get("transcode", {})),
    )


def _load_env_config(env: Mapping[str, str]) -> ExportSettings:
    """Configuration derived from ``LOOP_EXPORT_*`` environment variables."""

    def get(name: str) -> Optional[str]:
        return env.get(f"{ENV_PREFIX}{name}")

    output_size: Any = get("SIZE")
    if get("WIDTH") or get("HEIGHT"):
        default_width, default_height = ExportSettings().output_size
        output_size = (get("WIDTH") or default_width, get("HEIGHT") or default_height)

    return _parse_export_settings(
        {
            "frame_rate": get("FPS"),
            "output_size": output_size,
            "min_duration": get("MIN_DURATION"),
            "max_duration": get("MAX_DURATION"),
            "default_duration": get("DURATION"),
            "size_budget": get("SIZE_BUDGET"),
            "preset": get("PRESET"),
            "seed": get("SEED"),
            "log_file": get("LOG_FILE"),
            "capture": {
                "threaded": get("THREADED_CAPTURE"),
                "queue_size": get("QUEUE_SIZE"),
                "intermediate_crf": get("INTERMEDIATE_CRF"),
                "intermediate_preset": get("INTERMEDIATE_PRESET"),
            },
            "transcode": {
                "ffmpeg_binary": get("FFMPEG"),
            },
        }
    )


def load_config(
    config_path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> ExportSettings:
    """Load settings from a JSON file, or from environment variables when absent."""
    source_env = env if env is not None else os.environ
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            if not isinstance(data, Mapping):
                data = {}
            return _parse_export_settings(data)

    return _load_env_config(source_env)


__all__ = [
    "CaptureSettings",
    "DEFAULT_SIZE_BUDGET_BYTES",
    "ExportSettings",
    "TranscodeSettings",
    "load_config",
    "parse_byte_size",
    "parse_frame_size",
]
