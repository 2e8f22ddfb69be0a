"""Frame capture and streaming encode of a composited loop."""

from __future__ import annotations

import logging
import math
import queue
import shutil
import subprocess
import threading
from contextlib import closing
from typing import Callable, Iterator, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from loop_export.cancellation import CancellationToken
from loop_export.errors import EncodeError, ExportCancelled, ParameterError
from loop_export.models import STAGE_RENDERING, EncodedStream, Frame
from loop_export.progress import ProgressReporter

LOGGER = logging.getLogger(__name__)

_DONE = object()
_PUT_POLL_SECONDS = 0.1


class Compositor(Protocol):
    frame_size: Tuple[int, int]

    def render(self, timestamp: float) -> Frame:
        ...


class StreamingEncoder(Protocol):
    def submit(self, frame: Frame) -> None:
        ...

    def finalize(self) -> EncodedStream:
        ...

    def abort(self) -> None:
        ...


EncoderFactory = Callable[[int, int, float], StreamingEncoder]


def frame_count_for(frame_rate: float, duration_seconds: float) -> int:
    """Number of frames covering ``duration_seconds``: ``ceil(rate * duration)``."""
    # rounding first keeps 30 * 7.5 from becoming 225.00000000000003
    return int(math.ceil(round(frame_rate * duration_seconds, 9)))


def frame_timestamps(frame_rate: float, duration_seconds: float) -> List[float]:
    return [index / frame_rate for index in range(frame_count_for(frame_rate, duration_seconds))]


class FfmpegStreamEncoder:
    """Pipe raw BGR frames into ffmpeg and collect a streamable intermediate.

    Output is written as matroska to stdout so it can be consumed incrementally
    without a seekable target; a reader thread drains stdout into the stream's
    chunk list while frames are still being submitted.
    """

    CONTAINER = "matroska"

    def __init__(
        self,
        width: int,
        height: int,
        frame_rate: float,
        *,
        ffmpeg_binary: str = "ffmpeg",
        codec: str = "libx264",
        crf: int = 16,
        preset: str = "veryfast",
        chunk_size: int = 1 << 16,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if shutil.which(ffmpeg_binary) is None:
            raise EncodeError(f"{ffmpeg_binary} not found on PATH. Install ffmpeg with libx264.")

        self.width = width
        self.height = height
        self.chunk_size = chunk_size
        self.logger = logger or LOGGER
        self.stream = EncodedStream(
            container=self.CONTAINER,
            codec=codec,
            width=width,
            height=height,
            frame_rate=frame_rate,
        )

        self.cmd = [
            ffmpeg_binary,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "rawvideo",
            "-pix_fmt",
            "bgr24",
            "-s",
            f"{width}x{height}",
            "-r",
            str(frame_rate),
            "-i",
            "pipe:0",
            "-an",
            "-c:v",
            codec,
            "-crf",
            str(crf),
            "-preset",
            preset,
            "-pix_fmt",
            "yuv420p",
            "-f",
            self.CONTAINER,
            "pipe:1",
        ]
        self.logger.debug("Starting intermediate encoder: %s", " ".join(self.cmd))
        self.process = subprocess.Popen(
            self.cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        self._stderr_chunks: List[bytes] = []
        self._stdout_reader = threading.Thread(target=self._drain_stdout, name="encoder-stdout", daemon=True)
        self._stderr_reader = threading.Thread(target=self._drain_stderr, name="encoder-stderr", daemon=True)
        self._stdout_reader.start()
        self._stderr_reader.start()

    def _drain_stdout(self) -> None:
        assert self.process.stdout is not None
        for chunk in iter(lambda: self.process.stdout.read(self.chunk_size), b""):
            self.stream.append(chunk)

    def _drain_stderr(self) -> None:
        assert self.process.stderr is not None
        for chunk in iter(lambda: self.process.stderr.read(4096), b""):
            self._stderr_chunks.append(chunk)

    def _stderr(self) -> bytes:
        return b"".join(self._stderr_chunks)

    def _close_stdin(self) -> None:
        if self.process.stdin is not None:
            try:
                self.process.stdin.close()
            except OSError:
                pass

    def _join_readers(self) -> None:
        self._stdout_reader.join()
        self._stderr_reader.join()

    def submit(self, frame: Frame) -> None:
        if (frame.width, frame.height) != (self.width, self.height):
            raise EncodeError(
                f"Frame is {frame.width}x{frame.height}, encoder expects {self.width}x{self.height}"
            )
        if self.process.stdin is None:
            raise EncodeError("ffmpeg stdin unavailable")
        try:
            self.process.stdin.write(np.ascontiguousarray(frame.pixels).tobytes())
        except OSError as exc:
            if self.process.poll() is None:
                self.process.kill()
            self.process.wait()
            self._join_readers()
            raise EncodeError(
                f"ffmpeg rejected frame {self.stream.frame_count}", stderr=self._stderr()
            ) from exc
        self.stream.frame_count += 1

    def finalize(self) -> EncodedStream:
        self._close_stdin()
        return_code = self.process.wait()
        self._join_readers()
        if return_code != 0:
            raise EncodeError(
                f"ffmpeg exited with status {return_code} while finalizing",
                stderr=self._stderr(),
            )
        if self.stream.size_bytes == 0:
            raise EncodeError("ffmpeg produced an empty stream", stderr=self._stderr())
        return self.stream

    def abort(self) -> None:
        if self.process.poll() is None:
            self.process.kill()
        self._close_stdin()
        self.process.wait()
        self._join_readers()
        self.stream.chunks.clear()


def ffmpeg_encoder_factory(
    *,
    ffmpeg_binary: str = "ffmpeg",
    crf: int = 16,
    preset: str = "veryfast",
    logger: Optional[logging.Logger] = None,
) -> EncoderFactory:
    def factory(width: int, height: int, frame_rate: float) -> StreamingEncoder:
        return FfmpegStreamEncoder(
            width,
            height,
            frame_rate,
            ffmpeg_binary=ffmpeg_binary,
            crf=crf,
            preset=preset,
            logger=logger,
        )

    return factory


class CaptureEncodePipeline:
    """Drive a compositor at a fixed frame rate into a streaming encoder.

    With ``threaded=True`` rendering runs on a producer thread connected to the
    encoder by a bounded queue, so compositing frame N+1 overlaps encoding of
    frame N while the renderer blocks whenever the encoder falls behind.
    Frames reach the encoder strictly in timestamp order either way.
    """

    def __init__(
        self,
        encoder_factory: EncoderFactory,
        *,
        logger: Optional[logging.Logger] = None,
        queue_size: int = 8,
        threaded: bool = True,
    ) -> None:
        if queue_size <= 0:
            raise ParameterError(f"Capture queue size must be positive, got {queue_size}")
        self.encoder_factory = encoder_factory
        self.logger = logger or LOGGER
        self.queue_size = queue_size
        self.threaded = threaded

    def capture(
        self,
        compositor: Compositor,
        frame_rate: float,
        duration_seconds: float,
        *,
        progress: Optional[ProgressReporter] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EncodedStream:
        if frame_rate <= 0:
            raise ParameterError(f"Frame rate must be positive, got {frame_rate}")
        if duration_seconds <= 0:
            raise ParameterError(f"Duration must be positive, got {duration_seconds}")

        token = cancel_token or CancellationToken()
        timestamps = frame_timestamps(frame_rate, duration_seconds)
        total = len(timestamps)
        width, height = compositor.frame_size
        self.logger.info(
            "Capturing %s frames at %sx%s (%s fps, %.2fs)",
            total,
            width,
            height,
            frame_rate,
            duration_seconds,
        )

        counter = progress.counter(STAGE_RENDERING, total, "Frame capture") if progress else None
        encoder = self.encoder_factory(width, height, frame_rate)
        try:
            source = (
                self._threaded_frames(compositor, timestamps, token)
                if self.threaded
                else self._sequential_frames(compositor, timestamps, token)
            )
            with closing(source) as frames:
                for index, frame in frames:
                    token.raise_if_cancelled("capture")
                    encoder.submit(frame)
                    del frame
                    if counter is not None:
                        counter.advance(f"Rendering frame {index + 1} of {total}")
            token.raise_if_cancelled("capture")
            stream = encoder.finalize()
        except BaseException:
            encoder.abort()
            raise

        self.logger.info(
            "Captured %s frames into %s bytes of %s/%s",
            stream.frame_count,
            stream.size_bytes,
            stream.container,
            stream.codec,
        )
        return stream

    @staticmethod
    def _sequential_frames(
        compositor: Compositor,
        timestamps: Sequence[float],
        token: CancellationToken,
    ) -> Iterator[Tuple[int, Frame]]:
        for index, timestamp in enumerate(timestamps):
            token.raise_if_cancelled("capture")
            yield index, compositor.render(timestamp)

    def _threaded_frames(
        self,
        compositor: Compositor,
        timestamps: Sequence[float],
        token: CancellationToken,
    ) -> Iterator[Tuple[int, Frame]]:
        frame_queue: "queue.Queue[object]" = queue.Queue(maxsize=self.queue_size)
        stop = threading.Event()
        failure: List[BaseException] = []

        def put(item: object) -> bool:
            while not stop.is_set():
                try:
                    frame_queue.put(item, timeout=_PUT_POLL_SECONDS)
                    return True
                except queue.Full:
                    continue
            return False

        def produce() -> None:
            try:
                for index, timestamp in enumerate(timestamps):
                    if token.cancelled or stop.is_set():
                        return
                    if not put((index, compositor.render(timestamp))):
                        return
            except Exception as exc:
                failure.append(exc)
            finally:
                put(_DONE)

        producer = threading.Thread(target=produce, name="frame-renderer", daemon=True)
        producer.start()
        try:
            expected = 0
            while True:
                item = frame_queue.get()
                if item is _DONE:
                    break
                index, frame = item  # type: ignore[misc]
                if index != expected:
                    raise EncodeError(f"Frame {index} arrived out of order, expected {expected}")
                expected += 1
                yield index, frame
            if failure:
                raise failure[0]
            if expected != len(timestamps):
                token.raise_if_cancelled("capture")
                raise ExportCancelled(f"capture stopped after {expected} of {len(timestamps)} frames")
        finally:
            stop.set()
            while True:
                try:
                    frame_queue.get_nowait()
                except queue.Empty:
                    break
            producer.join()


__all__ = [
    "CaptureEncodePipeline",
    "Compositor",
    "EncoderFactory",
    "FfmpegStreamEncoder",
    "StreamingEncoder",
    "ffmpeg_encoder_factory",
    "frame_count_for",
    "frame_timestamps",
]
