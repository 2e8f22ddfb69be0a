"""
Looping background clip export: animated effect presets rendered over a still
image, captured at a fixed frame rate and re-encoded to fit a size budget.
"""

from .cancellation import CancellationToken
from .capture import CaptureEncodePipeline, FfmpegStreamEncoder
from .clock import AnimationClock, PhaseDefinition
from .compositor import FrameCompositor
from .config import ExportSettings, load_config
from .errors import (
    BudgetUnmet,
    EncodeError,
    ExportCancelled,
    LoopExportError,
    ParameterError,
    SourceLoadError,
)
from .exporter import LoopExporter
from .models import EncodedStream, ExportJob, ExportResult, Frame, ProgressEvent, QualityProfile
from .noise import NoiseField, NoiseFieldSynthesizer
from .particles import ParticleScheduler
from .presets import PRESETS, get_preset
from .transcoder import AdaptiveTranscoder

__all__ = [
    "AdaptiveTranscoder",
    "AnimationClock",
    "BudgetUnmet",
    "CancellationToken",
    "CaptureEncodePipeline",
    "EncodeError",
    "EncodedStream",
    "ExportCancelled",
    "ExportJob",
    "ExportResult",
    "ExportSettings",
    "FfmpegStreamEncoder",
    "Frame",
    "FrameCompositor",
    "LoopExportError",
    "LoopExporter",
    "NoiseField",
    "NoiseFieldSynthesizer",
    "PRESETS",
    "ParameterError",
    "ParticleScheduler",
    "PhaseDefinition",
    "ProgressEvent",
    "QualityProfile",
    "SourceLoadError",
    "get_preset",
    "load_config",
]
