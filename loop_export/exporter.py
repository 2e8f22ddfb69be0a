"""High level export orchestration shared by the CLI and library callers."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Optional, Union

import numpy as np

from loop_export.cancellation import CancellationToken
from loop_export.capture import CaptureEncodePipeline, EncoderFactory, ffmpeg_encoder_factory
from loop_export.compositor import FrameCompositor
from loop_export.config import ExportSettings
from loop_export.models import (
    STAGE_COMPLETE,
    STAGE_ENCODING,
    STAGE_LOADING,
    STAGE_RENDERING,
    ExportJob,
    ExportResult,
    Frame,
)
from loop_export.noise import DEFAULT_NOISE_CACHE, NoiseTextureCache
from loop_export.particles import ParticleScheduler
from loop_export.presets import EffectPreset, get_preset
from loop_export.progress import ProgressCallback, ProgressReporter
from loop_export.source import load_source_image
from loop_export.transcoder import AdaptiveTranscoder, FfmpegTranscodeBackend, TranscodeBackend

LOGGER = logging.getLogger(__name__)

_MIB = 1024 * 1024


class LoopExporter:
    """Render, capture and budget-fit a looping clip from one background image."""

    def __init__(
        self,
        settings: Optional[ExportSettings] = None,
        *,
        logger: Optional[logging.Logger] = None,
        encoder_factory: Optional[EncoderFactory] = None,
        transcode_backend: Optional[TranscodeBackend] = None,
        noise_cache: Optional[NoiseTextureCache] = None,
    ) -> None:
        self.settings = settings or ExportSettings()
        self.logger = logger or LOGGER
        capture = self.settings.capture
        ffmpeg_binary = self.settings.transcode.ffmpeg_binary

        self.encoder_factory = encoder_factory or ffmpeg_encoder_factory(
            ffmpeg_binary=ffmpeg_binary,
            crf=capture.intermediate_crf,
            preset=capture.intermediate_preset,
            logger=self.logger,
        )
        self.transcode_backend = transcode_backend or FfmpegTranscodeBackend(
            ffmpeg_binary=ffmpeg_binary,
            logger=self.logger,
        )
        self.noise_cache = noise_cache if noise_cache is not None else DEFAULT_NOISE_CACHE
        self.pipeline = CaptureEncodePipeline(
            self.encoder_factory,
            logger=self.logger,
            queue_size=capture.queue_size,
            threaded=capture.threaded,
        )
        self.transcoder = AdaptiveTranscoder(self.transcode_backend, logger=self.logger)

    @staticmethod
    def resolve_preset(preset: Union[str, EffectPreset]) -> EffectPreset:
        if isinstance(preset, EffectPreset):
            preset.validate()
            return preset
        return get_preset(preset)

    def build_compositor(self, job: ExportJob, image: np.ndarray) -> FrameCompositor:
        """Bake shared textures and particles for ``job`` and wrap them in a compositor."""
        preset = self.resolve_preset(job.preset)
        noise_ring = None
        if preset.noise is not None:
            field = preset.noise.field_for(job.output_size, job.seed)
            noise_ring = self.noise_cache.get(field)
        particles = ()
        if preset.particles is not None:
            particles = ParticleScheduler(preset.particles).generate(job.seed)
        return FrameCompositor(
            preset,
            image,
            job.output_size,
            noise_ring=noise_ring,
            particles=particles,
            logger=self.logger,
        )

    def preview_frame(self, job: ExportJob, timestamp: float) -> Frame:
        """Render a single frame of ``job`` for live preview scrubbing."""
        job.validate(self.settings.min_duration, self.settings.max_duration)
        image = load_source_image(job.source_image)
        return self.build_compositor(job, image).render(timestamp)

    def export(
        self,
        job: ExportJob,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExportResult:
        job.validate(self.settings.min_duration, self.settings.max_duration)
        token = cancel_token or CancellationToken()
        progress = ProgressReporter(on_progress, logger=self.logger)
        started = perf_counter()

        progress.emit(STAGE_LOADING, 0.0, "Initializing...")
        preset = self.resolve_preset(job.preset)
        self.logger.info(
            "Exporting %.2fs at %s fps, %sx%s with preset '%s' (seed %s)",
            job.duration_seconds,
            job.frame_rate,
            job.width,
            job.height,
            preset.name,
            job.seed,
        )

        progress.emit(STAGE_LOADING, 0.2, "Loading background image...")
        image = load_source_image(job.source_image)
        token.raise_if_cancelled("load")

        progress.emit(STAGE_LOADING, 0.4, "Generating noise texture...")
        compositor = self.build_compositor(job, image)
        token.raise_if_cancelled("bake")

        progress.emit(STAGE_RENDERING, 0.0, "Starting recording...")
        stream = self.pipeline.capture(
            compositor,
            job.frame_rate,
            job.duration_seconds,
            progress=progress,
            cancel_token=token,
        )

        progress.emit(STAGE_ENCODING, 0.0, "Processing video...")
        profiles = job.quality_profiles or self.settings.transcode.quality_profiles
        result = self.transcoder.transcode(
            stream,
            profiles,
            job.size_budget_bytes,
            progress=progress,
            cancel_token=token,
        )
        del stream

        elapsed = perf_counter() - started
        self.logger.info(
            "Export finished in %.1fs: %.2f MiB with profile '%s'%s",
            elapsed,
            result.size_bytes / _MIB,
            result.profile.name,
            "" if result.within_budget else " (over budget)",
        )
        progress.emit(
            STAGE_COMPLETE,
            1.0,
            f"Complete! Size: {result.size_bytes / _MIB:.2f} MB",
        )
        return result


__all__ = ["LoopExporter"]
