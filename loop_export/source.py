"""Background image resolution and decoding."""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from loop_export.errors import SourceLoadError
from loop_export.models import SourceImageRef


def _read_source_bytes(source: SourceImageRef) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise SourceLoadError(f"Failed to read background image '{path}': {exc}") from exc
    if callable(source):
        try:
            data = source()
        except Exception as exc:
            raise SourceLoadError(f"Background image provider failed: {exc}") from exc
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise SourceLoadError(
                f"Background image provider returned {type(data).__name__}, expected bytes"
            )
        return bytes(data)
    raise SourceLoadError(f"Unsupported background image reference: {type(source).__name__}")


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into a BGR array, flattening any alpha onto black."""
    if not data:
        raise SourceLoadError("Background image is empty")
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    if image is None:
        raise SourceLoadError("Failed to decode background image")
    if image.dtype == np.uint16:
        image = (image // 257).astype(np.uint8)

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        color = image[..., :3].astype(np.float32)
        alpha = image[..., 3:4].astype(np.float32) / 255.0
        return np.clip(np.rint(color * alpha), 0, 255).astype(np.uint8)
    return image[..., :3]


def load_source_image(source: SourceImageRef) -> np.ndarray:
    """Resolve a caller-supplied image reference into a BGR array."""
    return decode_image(_read_source_bytes(source))


__all__ = ["decode_image", "load_source_image"]
