import sys
from pathlib import Path
from typing import List

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from loop_export.cancellation import CancellationToken
from loop_export.config import CaptureSettings, ExportSettings
from loop_export.errors import ExportCancelled, ParameterError, SourceLoadError
from loop_export.exporter import LoopExporter
from loop_export.models import (
    STAGE_COMPLETE,
    STAGE_ENCODING,
    STAGE_LOADING,
    STAGE_RENDERING,
    EncodedStream,
    ExportJob,
    Frame,
    QualityProfile,
)
from loop_export.noise import NoiseTextureCache
from loop_export.presets import SEPIA_GRAIN

FRAME_SIZE = (36, 64)


def png_bytes(width: int = 72, height: int = 128) -> bytes:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[..., 1] = np.linspace(0, 255, width, dtype=np.uint8)[np.newaxis, :]
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


class CollectingEncoder:
    def __init__(self, width, height, frame_rate):
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        self.frames: List[Frame] = []
        self.aborted = False

    def submit(self, frame: Frame) -> None:
        assert frame.pixels.shape == (self.height, self.width, 3)
        self.frames.append(frame)

    def finalize(self) -> EncodedStream:
        stream = EncodedStream("matroska", "fake", self.width, self.height, self.frame_rate)
        stream.frame_count = len(self.frames)
        for frame in self.frames:
            stream.append(frame.pixels[:1, :1].tobytes())
        return stream

    def abort(self) -> None:
        self.aborted = True


class ShrinkingBackend:
    """Each profile yields a smaller artifact."""

    def __init__(self, sizes):
        self.sizes = list(sizes)
        self.calls = []

    def encode(self, stream: EncodedStream, profile: QualityProfile) -> bytes:
        self.calls.append((stream.frame_count, profile.name))
        return b"m" * self.sizes[len(self.calls) - 1]


def make_exporter(encoders, backend, **settings_overrides) -> LoopExporter:
    def factory(width, height, frame_rate):
        encoder = CollectingEncoder(width, height, frame_rate)
        encoders.append(encoder)
        return encoder

    settings = ExportSettings(capture=CaptureSettings(queue_size=2), **settings_overrides)
    return LoopExporter(
        settings,
        encoder_factory=factory,
        transcode_backend=backend,
        noise_cache=NoiseTextureCache(),
    )


def make_job(**overrides) -> ExportJob:
    values = {
        "source_image": png_bytes(),
        "duration_seconds": 3.0,
        "frame_rate": 10.0,
        "output_size": FRAME_SIZE,
        "size_budget_bytes": 1000,
    }
    values.update(overrides)
    return ExportJob(**values)


def test_export_runs_every_stage_with_progress():
    encoders: List[CollectingEncoder] = []
    backend = ShrinkingBackend([5000, 800])
    events = []

    result = make_exporter(encoders, backend).export(make_job(), on_progress=events.append)

    assert len(encoders) == 1
    assert len(encoders[0].frames) == 30
    assert [frame.timestamp for frame in encoders[0].frames] == [i / 10.0 for i in range(30)]
    assert backend.calls == [(30, "good"), (30, "reduced")]
    assert result.within_budget
    assert result.size_bytes == 800
    assert result.profile.name == "reduced"

    stages = [event.stage for event in events]
    assert stages[:3] == [STAGE_LOADING] * 3
    assert [event.message for event in events[:3]] == [
        "Initializing...",
        "Loading background image...",
        "Generating noise texture...",
    ]
    assert stages.count(STAGE_RENDERING) == 31
    assert stages[-1] == STAGE_COMPLETE
    assert events[-1].fraction == 1.0
    assert STAGE_ENCODING in stages
    # stages never go backwards
    order = {stage: index for index, stage in enumerate((STAGE_LOADING, STAGE_RENDERING, STAGE_ENCODING, STAGE_COMPLETE))}
    ranks = [order[stage] for stage in stages]
    assert ranks == sorted(ranks)


def test_job_profiles_override_settings():
    encoders: List[CollectingEncoder] = []
    backend = ShrinkingBackend([2000])
    job = make_job(quality_profiles=(QualityProfile("only", 30, "fast"),))

    result = make_exporter(encoders, backend).export(job)

    assert backend.calls == [(30, "only")]
    assert not result.within_budget


def test_export_accepts_path_and_callable_sources(tmp_path):
    image_path = tmp_path / "background.png"
    image_path.write_bytes(png_bytes())

    for source in (image_path, str(image_path), png_bytes):
        encoders: List[CollectingEncoder] = []
        result = make_exporter(encoders, ShrinkingBackend([10])).export(make_job(source_image=source))
        assert result.within_budget


def test_frames_are_reproducible_between_exports():
    first: List[CollectingEncoder] = []
    second: List[CollectingEncoder] = []
    make_exporter(first, ShrinkingBackend([10])).export(make_job(seed=3))
    make_exporter(second, ShrinkingBackend([10])).export(make_job(seed=3))

    for left, right in zip(first[0].frames, second[0].frames):
        assert np.array_equal(left.pixels, right.pixels)


def test_preview_matches_exported_frame():
    encoders: List[CollectingEncoder] = []
    exporter = make_exporter(encoders, ShrinkingBackend([10]))
    job = make_job(preset="twinkle")
    exporter.export(job)

    preview = exporter.preview_frame(job, 1.2)
    assert np.array_equal(preview.pixels, encoders[0].frames[12].pixels)


def test_preset_objects_are_accepted():
    encoders: List[CollectingEncoder] = []
    exporter = make_exporter(encoders, ShrinkingBackend([10]))
    frame = exporter.preview_frame(make_job(preset=SEPIA_GRAIN), 0.0)
    assert (frame.width, frame.height) == FRAME_SIZE


def test_undecodable_source_raises_before_capture():
    encoders: List[CollectingEncoder] = []
    with pytest.raises(SourceLoadError):
        make_exporter(encoders, ShrinkingBackend([10])).export(make_job(source_image=b"not an image"))
    assert encoders == []


def test_missing_source_file_raises(tmp_path):
    with pytest.raises(SourceLoadError):
        make_exporter([], ShrinkingBackend([10])).export(make_job(source_image=tmp_path / "nope.png"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"duration_seconds": 2.0},
        {"duration_seconds": 9.0},
        {"frame_rate": 0.0},
        {"frame_rate": float("nan")},
        {"frame_rate": float("inf")},
        {"duration_seconds": float("nan")},
        {"output_size": (35, 64)},
        {"size_budget_bytes": 0},
        {"preset": "unknown"},
        {"quality_profiles": ()},
        {"seed": -1},
        {"seed": 1.5},
        {"seed": "7"},
    ],
)
def test_invalid_jobs_raise_parameter_error(overrides):
    encoders: List[CollectingEncoder] = []
    with pytest.raises(ParameterError):
        make_exporter(encoders, ShrinkingBackend([10])).export(make_job(**overrides))
    assert encoders == []


def test_duration_bounds_come_from_settings():
    encoders: List[CollectingEncoder] = []
    exporter = make_exporter(encoders, ShrinkingBackend([10]), min_duration=1.0, max_duration=2.0)
    exporter.export(make_job(duration_seconds=1.5))
    assert len(encoders[0].frames) == 15


def test_cancelled_token_stops_export():
    token = CancellationToken()
    token.cancel()
    encoders: List[CollectingEncoder] = []
    backend = ShrinkingBackend([10])

    with pytest.raises(ExportCancelled):
        make_exporter(encoders, backend).export(make_job(), cancel_token=token)
    assert backend.calls == []


@pytest.mark.parametrize("preset", ["special-one-v3", "twinkle"])
def test_preview_rejects_negative_seed(preset):
    exporter = make_exporter([], ShrinkingBackend([10]))
    with pytest.raises(ParameterError):
        exporter.preview_frame(make_job(preset=preset, seed=-1), 0.0)
