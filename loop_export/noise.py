"""Procedural grain and turbulence textures for overlay effects."""

from __future__ import annotations

import logging
import math
import threading
from collections import OrderedDict
from dataclasses import dataclass
from time import perf_counter
from typing import Dict, Optional, Tuple

import numpy as np

from loop_export.errors import ParameterError

LOGGER = logging.getLogger(__name__)

_LATTICE_SIZE = 256
DEFAULT_CACHE_ENTRIES = 8


@dataclass(frozen=True)
class NoiseField:
    """Parameters of a baked noise texture ring.

    ``base_frequency`` is expressed in lattice cells per pixel. ``frame_stride``
    is the noise-space offset between consecutive baked frames and
    ``update_rate`` is how many ring frames are crossed per second.
    """

    width: int
    height: int
    base_frequency: float = 0.3
    octaves: int = 1
    color_tint: Tuple[int, int, int] = (112, 66, 20)
    frame_count: int = 1
    frame_stride: float = 15.0
    contrast: float = 1.0
    alpha_scale: float = 1.0
    update_rate: float = 0.5
    seed: int = 0

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ParameterError(f"Noise field size must be positive, got {self.width}x{self.height}")
        if self.base_frequency <= 0:
            raise ParameterError("Noise base frequency must be positive")
        if self.octaves < 1:
            raise ParameterError("Noise field needs at least one octave")
        if self.frame_count < 1:
            raise ParameterError("Noise field needs at least one frame")
        if self.contrast <= 0:
            raise ParameterError("Noise contrast exponent must be positive")
        if not 0.0 < self.alpha_scale <= 1.0:
            raise ParameterError("Noise alpha scale must be within (0, 1]")
        if self.update_rate <= 0:
            raise ParameterError("Noise update rate must be positive")


class NoiseTextureRing:
    """Read-only ring of baked alpha planes with time-driven cross-fading."""

    def __init__(self, field: NoiseField, planes: Tuple[np.ndarray, ...]) -> None:
        if not planes:
            raise ParameterError("A noise texture ring needs at least one plane")
        for plane in planes:
            plane.setflags(write=False)
        self.field = field
        self.planes = planes

    def __len__(self) -> int:
        return len(self.planes)

    @property
    def tint_bgr(self) -> Tuple[int, int, int]:
        r, g, b = self.field.color_tint
        return (b, g, r)

    def frame_position(self, timestamp: float) -> Tuple[int, int, float]:
        """Return ``(current_index, next_index, weight)`` for a timestamp."""
        count = len(self.planes)
        position = (timestamp * self.field.update_rate) % count
        whole = math.floor(position)
        weight = position - whole
        current = int(whole) % count
        return current, (current + 1) % count, weight

    def alpha_at(self, timestamp: float) -> np.ndarray:
        """Cross-faded alpha plane in ``[0, 1]`` as float32."""
        current, following, weight = self.frame_position(timestamp)
        first = self.planes[current].astype(np.float32) / 255.0
        if len(self.planes) == 1 or weight <= 0.0:
            return first
        second = self.planes[following].astype(np.float32) / 255.0
        return first * (1.0 - weight) + second * weight


class NoiseFieldSynthesizer:
    """Seeded fractal value-noise generator.

    Lattice values come from a seeded permutation table, are blended with the
    quintic fade curve and summed over octaves with halving amplitude and
    doubling frequency. Two syntheses with equal parameters are byte-identical.
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or LOGGER

    @staticmethod
    def _lattice(seed: int) -> Tuple[np.ndarray, np.ndarray]:
        rng = np.random.default_rng(seed)
        perm = rng.permutation(_LATTICE_SIZE).astype(np.int64)
        values = rng.uniform(-1.0, 1.0, _LATTICE_SIZE)
        return perm, values

    @staticmethod
    def _fade(t: np.ndarray) -> np.ndarray:
        return t * t * t * (t * (t * 6 - 15) + 10)

    @staticmethod
    def _smooth_noise(
        xs: np.ndarray,
        ys: np.ndarray,
        perm: np.ndarray,
        values: np.ndarray,
    ) -> np.ndarray:
        x0 = np.floor(xs)
        y0 = np.floor(ys)
        fx = xs - x0
        fy = ys - y0
        ix = x0.astype(np.int64)
        iy = y0.astype(np.int64)

        mask = _LATTICE_SIZE - 1

        def corner(cx: np.ndarray, cy: np.ndarray) -> np.ndarray:
            return values[perm[(perm[cx & mask] + cy) & mask]]

        v00 = corner(ix, iy)
        v10 = corner(ix + 1, iy)
        v01 = corner(ix, iy + 1)
        v11 = corner(ix + 1, iy + 1)

        u = NoiseFieldSynthesizer._fade(fx)
        v = NoiseFieldSynthesizer._fade(fy)
        top = v00 + (v10 - v00) * u
        bottom = v01 + (v11 - v01) * u
        return top + (bottom - top) * v

    def fractal(self, field: NoiseField, offset: float = 0.0) -> np.ndarray:
        """Return raw fractal noise in ``[-1, 1]`` for one frame offset."""
        perm, values = self._lattice(field.seed)
        xs = np.arange(field.width, dtype=np.float64)[np.newaxis, :]
        ys = np.arange(field.height, dtype=np.float64)[:, np.newaxis]
        base_x = xs * field.base_frequency + offset
        base_y = ys * field.base_frequency + offset

        total = np.zeros((field.height, field.width), dtype=np.float64)
        amplitude = 1.0
        amplitude_sum = 0.0
        frequency = 1.0
        for _ in range(field.octaves):
            grid_x = np.broadcast_to(base_x * frequency, total.shape)
            grid_y = np.broadcast_to(base_y * frequency, total.shape)
            total += self._smooth_noise(grid_x, grid_y, perm, values) * amplitude
            amplitude_sum += amplitude
            amplitude *= 0.5
            frequency *= 2.0
        return total / amplitude_sum

    def synthesize(self, field: NoiseField, frame_index: int = 0) -> np.ndarray:
        """Render one ``uint8`` alpha plane of the field."""
        noise = self.fractal(field, offset=frame_index * field.frame_stride)
        normalized = np.clip((noise + 1.0) * 0.5, 0.0, 1.0)
        intensity = np.power(normalized, 1.0 / field.contrast) * field.alpha_scale
        return np.floor(np.clip(intensity, 0.0, 1.0) * 255.0).astype(np.uint8)

    def bake(self, field: NoiseField) -> NoiseTextureRing:
        field.validate()
        started = perf_counter()
        planes = tuple(
            self.synthesize(field, frame_index)
            for frame_index in range(field.frame_count)
        )
        self.logger.debug(
            "Baked %s noise frame(s) at %sx%s in %.2fs",
            field.frame_count,
            field.width,
            field.height,
            perf_counter() - started,
        )
        return NoiseTextureRing(field, planes)


class NoiseTextureCache:
    """Memo of baked rings keyed by their full field definition.

    At most ``max_entries`` rings are kept; the least recently used ring is
    evicted first. Baking happens outside the shared lock so unrelated fields
    bake concurrently, while concurrent requests for the same field wait for a
    single bake.
    """

    def __init__(
        self,
        synthesizer: Optional[NoiseFieldSynthesizer] = None,
        max_entries: int = DEFAULT_CACHE_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ParameterError(f"Noise cache needs room for one ring, got {max_entries}")
        self.synthesizer = synthesizer or NoiseFieldSynthesizer()
        self.max_entries = max_entries
        self._rings: "OrderedDict[NoiseField, NoiseTextureRing]" = OrderedDict()
        self._baking: Dict[NoiseField, threading.Lock] = {}
        self._lock = threading.Lock()

    def _lookup(self, field: NoiseField) -> Optional[NoiseTextureRing]:
        ring = self._rings.get(field)
        if ring is not None:
            self._rings.move_to_end(field)
        return ring

    def get(self, field: NoiseField) -> NoiseTextureRing:
        with self._lock:
            ring = self._lookup(field)
            if ring is not None:
                return ring
            bake_lock = self._baking.setdefault(field, threading.Lock())

        with bake_lock:
            with self._lock:
                ring = self._lookup(field)
            if ring is not None:
                return ring
            try:
                ring = self.synthesizer.bake(field)
            finally:
                with self._lock:
                    self._baking.pop(field, None)
                    if ring is not None:
                        self._store(field, ring)
            return ring

    def _store(self, field: NoiseField, ring: NoiseTextureRing) -> None:
        self._rings[field] = ring
        self._rings.move_to_end(field)
        while len(self._rings) > self.max_entries:
            evicted, _ = self._rings.popitem(last=False)
            LOGGER.debug(
                "Evicted noise ring %sx%s seed=%s", evicted.width, evicted.height, evicted.seed
            )

    def __contains__(self, field: NoiseField) -> bool:
        with self._lock:
            return field in self._rings

    def __len__(self) -> int:
        with self._lock:
            return len(self._rings)

    def clear(self) -> None:
        with self._lock:
            self._rings.clear()


DEFAULT_NOISE_CACHE = NoiseTextureCache()


__all__ = [
    "DEFAULT_CACHE_ENTRIES",
    "DEFAULT_NOISE_CACHE",
    "NoiseField",
    "NoiseFieldSynthesizer",
    "NoiseTextureCache",
    "NoiseTextureRing",
]
