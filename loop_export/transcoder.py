"""Budget-driven re-encoding of a captured stream."""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from loop_export.cancellation import CancellationToken
from loop_export.errors import EncodeError, ParameterError
from loop_export.models import (
    STAGE_ENCODING,
    EncodedStream,
    ExportResult,
    QualityProfile,
    TranscodeAttempt,
)
from loop_export.progress import ProgressReporter

LOGGER = logging.getLogger(__name__)

DEFAULT_QUALITY_PROFILES = (
    QualityProfile("good", 23, "medium"),
    QualityProfile("reduced", 25, "medium"),
    QualityProfile("low", 27, "medium"),
    QualityProfile("compact", 28, "slow"),
)

_MIB = 1024 * 1024


class TranscodeBackend(Protocol):
    def encode(self, stream: EncodedStream, profile: QualityProfile) -> bytes:
        ...


class FfmpegTranscodeBackend:
    """Re-encode an intermediate stream into a progressive-playback H.264 MP4."""

    def __init__(
        self,
        *,
        ffmpeg_binary: str = "ffmpeg",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.logger = logger or LOGGER

    def build_command(self, stream: EncodedStream, profile: QualityProfile, output_path: Path) -> List[str]:
        return [
            self.ffmpeg_binary,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            stream.container,
            "-i",
            "pipe:0",
            "-map",
            "0:v:0",
            "-an",
            "-c:v",
            "libx264",
            "-preset",
            profile.encoding_preset,
            "-crf",
            str(profile.compression_level),
            "-pix_fmt",
            "yuv420p",
            "-movflags",
            "+faststart",
            str(output_path),
        ]

    def encode(self, stream: EncodedStream, profile: QualityProfile) -> bytes:
        if shutil.which(self.ffmpeg_binary) is None:
            raise EncodeError(f"{self.ffmpeg_binary} not found on PATH. Install ffmpeg with libx264.")

        # faststart rewrites the moov atom, which needs a seekable output file
        with tempfile.TemporaryDirectory(prefix="loop_export_") as temp_dir:
            output_path = Path(temp_dir) / "candidate.mp4"
            cmd = self.build_command(stream, profile, output_path)
            self.logger.debug("Transcoding with: %s", " ".join(cmd))
            completed = subprocess.run(
                cmd,
                input=stream.to_bytes(),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
            )
            if completed.returncode != 0:
                raise EncodeError(
                    f"ffmpeg transcode with profile '{profile.name}' exited with status "
                    f"{completed.returncode}",
                    stderr=completed.stderr,
                )
            if not output_path.exists():
                raise EncodeError(f"ffmpeg produced no output for profile '{profile.name}'")
            return output_path.read_bytes()


class AdaptiveTranscoder:
    """Monotone quality search that stops at the first profile within budget.

    Profiles are tried highest quality first. Each attempt is a full re-encode;
    the previous candidate is released before the next attempt starts, so at
    most one candidate artifact is held at a time. When every profile is over
    budget the last attempt is returned with ``within_budget=False``.
    """

    def __init__(
        self,
        backend: TranscodeBackend,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.backend = backend
        self.logger = logger or LOGGER

    def transcode(
        self,
        stream: EncodedStream,
        quality_profiles: Sequence[QualityProfile],
        size_budget_bytes: int,
        *,
        progress: Optional[ProgressReporter] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExportResult:
        profiles = tuple(quality_profiles)
        if not profiles:
            raise ParameterError("Quality profile list must not be empty")
        if size_budget_bytes <= 0:
            raise ParameterError(f"Size budget must be positive, got {size_budget_bytes}")

        attempts: List[TranscodeAttempt] = []
        candidate: Optional[bytes] = None
        for index, profile in enumerate(profiles):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled("transcode")
            if progress is not None:
                progress.emit(
                    STAGE_ENCODING,
                    0.4 + index * 0.1,
                    f"Encoding video (quality {index + 1}/{len(profiles)})...",
                )

            # drop the rejected candidate before the next encode
            candidate = None
            candidate = self.backend.encode(stream, profile)
            size = len(candidate)
            within_budget = size <= size_budget_bytes
            attempts.append(TranscodeAttempt(profile, size, within_budget))
            self.logger.info(
                "Transcode attempt %s/%s with profile '%s' (crf %s, %s): %.2f MiB (%s budget %.2f MiB)",
                index + 1,
                len(profiles),
                profile.name,
                profile.compression_level,
                profile.encoding_preset,
                size / _MIB,
                "within" if within_budget else "over",
                size_budget_bytes / _MIB,
            )

            if within_budget or index == len(profiles) - 1:
                if not within_budget:
                    self.logger.warning(
                        "All %s quality profiles exhausted; returning %.2f MiB artifact over the %.2f MiB budget",
                        len(profiles),
                        size / _MIB,
                        size_budget_bytes / _MIB,
                    )
                if progress is not None:
                    progress.emit(STAGE_ENCODING, 0.9, "Finalizing...")
                return ExportResult(
                    artifact=candidate,
                    size_bytes=size,
                    profile=profile,
                    within_budget=within_budget,
                    budget_bytes=size_budget_bytes,
                    attempts=tuple(attempts),
                )

        raise AssertionError("unreachable: the last profile always returns")


__all__ = [
    "AdaptiveTranscoder",
    "DEFAULT_QUALITY_PROFILES",
    "FfmpegTranscodeBackend",
    "TranscodeBackend",
]
