import shutil
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from loop_export.capture import FfmpegStreamEncoder
from loop_export.config import CaptureSettings, ExportSettings
from loop_export.errors import EncodeError
from loop_export.exporter import LoopExporter
from loop_export.models import ExportJob, Frame, QualityProfile
from loop_export.noise import NoiseTextureCache
from loop_export.transcoder import FfmpegTranscodeBackend

pytestmark = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")


def solid_frame(index: int, width: int = 32, height: int = 32) -> Frame:
    pixels = np.full((height, width, 3), (index * 8) % 256, dtype=np.uint8)
    return Frame(timestamp=index / 10.0, pixels=pixels)


def test_stream_encoder_produces_matroska_chunks():
    encoder = FfmpegStreamEncoder(32, 32, 10.0)
    for index in range(10):
        encoder.submit(solid_frame(index))
    stream = encoder.finalize()

    assert stream.container == "matroska"
    assert stream.frame_count == 10
    assert stream.size_bytes > 0
    # EBML magic
    assert stream.to_bytes()[:4] == b"\x1a\x45\xdf\xa3"


def test_stream_encoder_rejects_mismatched_frames():
    encoder = FfmpegStreamEncoder(32, 32, 10.0)
    try:
        with pytest.raises(EncodeError):
            encoder.submit(solid_frame(0, width=16))
    finally:
        encoder.abort()


def test_transcode_writes_faststart_mp4():
    encoder = FfmpegStreamEncoder(32, 32, 10.0)
    for index in range(10):
        encoder.submit(solid_frame(index))
    stream = encoder.finalize()

    artifact = FfmpegTranscodeBackend().encode(stream, QualityProfile("good", 23, "medium"))

    assert artifact[4:8] == b"ftyp"
    assert 0 <= artifact.find(b"moov") < artifact.find(b"mdat")


def test_end_to_end_export(tmp_path):
    image = np.zeros((128, 72, 3), dtype=np.uint8)
    image[:, :36] = (40, 120, 200)
    ok, encoded = cv2.imencode(".png", image)
    assert ok

    settings = ExportSettings(capture=CaptureSettings(queue_size=4))
    exporter = LoopExporter(settings, noise_cache=NoiseTextureCache())
    job = ExportJob(
        source_image=encoded.tobytes(),
        duration_seconds=3.0,
        frame_rate=10.0,
        output_size=(36, 64),
    )
    result = exporter.export(job)

    assert result.within_budget
    assert result.profile.name == "good"
    assert result.artifact[4:8] == b"ftyp"

    output = tmp_path / "clip.mp4"
    output.write_bytes(result.artifact)
    capture = cv2.VideoCapture(str(output))
    try:
        assert capture.isOpened()
        assert int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)) == 36
        assert int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)) == 64
    finally:
        capture.release()
