"""Data models used across the loop export pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

import numpy as np

from loop_export.errors import BudgetUnmet, ParameterError

if TYPE_CHECKING:
    from loop_export.presets import EffectPreset

SourceImageRef = Union[bytes, str, Path, Callable[[], bytes]]

STAGE_LOADING = "loading"
STAGE_RENDERING = "rendering"
STAGE_ENCODING = "encoding"
STAGE_COMPLETE = "complete"
PROGRESS_STAGES = (STAGE_LOADING, STAGE_RENDERING, STAGE_ENCODING, STAGE_COMPLETE)


@dataclass(frozen=True)
class QualityProfile:
    """One encoder setting tried by the adaptive transcoder."""

    name: str
    compression_level: int
    encoding_preset: str = "medium"


@dataclass(frozen=True)
class ExportJob:
    """Caller-owned description of a single export request."""

    source_image: SourceImageRef
    duration_seconds: float = 7.5
    frame_rate: float = 30.0
    output_size: Tuple[int, int] = (1080, 1920)
    size_budget_bytes: int = 8 * 1024 * 1024
    preset: Union[str, "EffectPreset"] = "special-one-v3"
    seed: int = 0
    quality_profiles: Optional[Tuple[QualityProfile, ...]] = None

    @property
    def width(self) -> int:
        return int(self.output_size[0])

    @property
    def height(self) -> int:
        return int(self.output_size[1])

    def validate(self, min_duration: float = 3.0, max_duration: float = 8.0) -> None:
        if not math.isfinite(self.duration_seconds) or not (
            min_duration <= self.duration_seconds <= max_duration
        ):
            raise ParameterError(
                f"Duration must be between {min_duration} and {max_duration} seconds, "
                f"got {self.duration_seconds}"
            )
        if not math.isfinite(self.frame_rate) or self.frame_rate <= 0:
            raise ParameterError(f"Frame rate must be positive, got {self.frame_rate}")
        width, height = self.output_size
        if width <= 0 or height <= 0:
            raise ParameterError(f"Output size must be positive, got {width}x{height}")
        # yuv420p needs even dimensions
        if width % 2 or height % 2:
            raise ParameterError(f"Output size must be even, got {width}x{height}")
        if self.size_budget_bytes <= 0:
            raise ParameterError(
                f"Size budget must be positive, got {self.size_budget_bytes}"
            )
        if self.quality_profiles is not None and not self.quality_profiles:
            raise ParameterError("Quality profile list must not be empty")
        if isinstance(self.seed, bool) or not isinstance(self.seed, (int, np.integer)):
            raise ParameterError(f"Seed must be an integer, got {self.seed!r}")
        if self.seed < 0:
            raise ParameterError(f"Seed must be non-negative, got {self.seed}")


@dataclass
class Frame:
    """Composited BGR pixel buffer for one timestamp."""

    timestamp: float
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass
class EncodedStream:
    """Append-only sequence of encoded chunks plus container metadata."""

    container: str
    codec: str
    width: int
    height: int
    frame_rate: float
    frame_count: int = 0
    chunks: List[bytes] = field(default_factory=list)

    def append(self, chunk: bytes) -> None:
        if chunk:
            self.chunks.append(bytes(chunk))

    @property
    def size_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    def to_bytes(self) -> bytes:
        return b"".join(self.chunks)


@dataclass(frozen=True)
class TranscodeAttempt:
    """Measured outcome of one re-encode."""

    profile: QualityProfile
    size_bytes: int
    within_budget: bool


@dataclass(frozen=True)
class ExportResult:
    """Final artifact and the size/quality report that produced it."""

    artifact: bytes
    size_bytes: int
    profile: QualityProfile
    within_budget: bool
    budget_bytes: int
    attempts: Tuple[TranscodeAttempt, ...] = ()

    def raise_for_budget(self) -> None:
        """Raise `BudgetUnmet` when the artifact did not fit its budget."""
        if not self.within_budget:
            raise BudgetUnmet(self.size_bytes, self.budget_bytes)


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification emitted at frame and attempt granularity."""

    stage: str
    fraction: float
    message: str = ""


__all__ = [
    "EncodedStream",
    "ExportJob",
    "ExportResult",
    "Frame",
    "PROGRESS_STAGES",
    "ProgressEvent",
    "QualityProfile",
    "STAGE_COMPLETE",
    "STAGE_ENCODING",
    "STAGE_LOADING",
    "STAGE_RENDERING",
    "SourceImageRef",
    "TranscodeAttempt",
]
