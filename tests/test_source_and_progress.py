import logging
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from loop_export.errors import EncodeError, SourceLoadError
from loop_export.models import EncodedStream
from loop_export.progress import ProgressReporter, _format_duration, eta_string
from loop_export.source import decode_image, load_source_image


def encode_png(image: np.ndarray) -> bytes:
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


def test_decode_color_png():
    image = np.zeros((4, 6, 3), dtype=np.uint8)
    image[..., 2] = 200
    decoded = decode_image(encode_png(image))
    assert decoded.shape == (4, 6, 3)
    assert np.array_equal(decoded, image)


def test_decode_grayscale_expands_to_bgr():
    decoded = decode_image(encode_png(np.full((3, 3), 77, dtype=np.uint8)))
    assert decoded.shape == (3, 3, 3)
    assert np.all(decoded == 77)


def test_decode_alpha_is_flattened_onto_black():
    image = np.zeros((2, 2, 4), dtype=np.uint8)
    image[..., :3] = 200
    image[0, 0, 3] = 255
    image[0, 1, 3] = 0
    image[1, :, 3] = 128
    decoded = decode_image(encode_png(image))

    assert decoded.shape == (2, 2, 3)
    assert np.all(decoded[0, 0] == 200)
    assert np.all(decoded[0, 1] == 0)
    assert np.all(decoded[1, 0] == 100)


def test_decode_sixteen_bit_png():
    image = np.full((2, 2, 3), 65535, dtype=np.uint16)
    decoded = decode_image(encode_png(image))
    assert decoded.dtype == np.uint8
    assert np.all(decoded == 255)


def test_source_references(tmp_path):
    data = encode_png(np.zeros((2, 2, 3), dtype=np.uint8))
    path = tmp_path / "image.png"
    path.write_bytes(data)

    for source in (data, bytearray(data), path, str(path), lambda: data):
        assert load_source_image(source).shape == (2, 2, 3)


@pytest.mark.parametrize(
    "source",
    [
        b"",
        b"garbage",
        Path("/nonexistent/image.png"),
        lambda: "not bytes",
        12345,
    ],
)
def test_bad_sources_raise_source_load_error(source):
    with pytest.raises(SourceLoadError):
        load_source_image(source)


def test_failing_provider_is_wrapped():
    def provider():
        raise ConnectionError("offline")

    with pytest.raises(SourceLoadError, match="offline"):
        load_source_image(provider)


def test_encode_error_carries_stderr_tail():
    stderr = b"\n".join(f"line {index}".encode() for index in range(10))
    error = EncodeError("ffmpeg failed", stderr=stderr)
    assert error.stderr == stderr
    message = str(error)
    assert message.startswith("ffmpeg failed")
    assert "line 9" in message
    assert "line 4" not in message


def test_encoded_stream_skips_empty_chunks():
    stream = EncodedStream("matroska", "libx264", 2, 2, 30.0)
    stream.append(b"ab")
    stream.append(b"")
    stream.append(b"c")
    assert stream.chunks == [b"ab", b"c"]
    assert stream.size_bytes == 3
    assert stream.to_bytes() == b"abc"


def test_format_duration():
    assert _format_duration(0.2) == "<1s"
    assert _format_duration(42) == "42s"
    assert _format_duration(125) == "2m05s"
    assert _format_duration(3725) == "1h02m05s"


def test_eta_string_requires_progress():
    assert eta_string(0.0, 0, 10) == "ETA estimating"
    assert eta_string(5.0, 5, 10).startswith("ETA 5s")


def test_reporter_clamps_fractions():
    events = []
    reporter = ProgressReporter(events.append, logger=logging.getLogger("test"))
    reporter.emit("encoding", 1.4, "over")
    reporter.emit("encoding", -0.1, "under")
    assert [event.fraction for event in events] == [1.0, 0.0]


def test_stage_counter_logs_periodically(caplog):
    reporter = ProgressReporter(logger=logging.getLogger("loop_export.test"))
    counter = reporter.counter("rendering", 40, "Frame capture")
    with caplog.at_level(logging.INFO, logger="loop_export.test"):
        for _ in range(40):
            counter.advance()

    lines = [record.getMessage() for record in caplog.records if "Frame capture" in record.getMessage()]
    assert len(lines) == 20
    assert "40/40" in lines[-1]
