"""Per-timestamp frame composition for looping export and live preview."""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from loop_export.clock import triangle_wave
from loop_export.errors import ParameterError
from loop_export.models import Frame
from loop_export.noise import NoiseTextureRing
from loop_export.particles import Particle
from loop_export.presets import EffectPreset

LOGGER = logging.getLogger(__name__)

_MIN_BLUR_SIGMA = 0.05


def contrast_factor(contrast: float) -> float:
    """Classic 8-bit contrast factor for a contrast multiplier."""
    numerator = 259.0 * (contrast * 255.0 + 255.0)
    denominator = 255.0 * (259.0 - contrast * 255.0)
    if abs(denominator) < 1e-6:
        denominator = math.copysign(1e-6, denominator)
    return numerator / denominator


def apply_brightness_contrast(
    pixels: np.ndarray,
    brightness: Optional[float] = None,
    contrast: Optional[float] = None,
) -> np.ndarray:
    """Apply ``c * b`` then ``factor * (c - 128) + 128`` with per-step clamping."""
    result = pixels.astype(np.float32)
    if brightness is not None:
        result = np.clip(result * brightness, 0.0, 255.0)
    if contrast is not None:
        factor = contrast_factor(contrast)
        result = np.clip(factor * (result - 128.0) + 128.0, 0.0, 255.0)
    return result


def blend(base: np.ndarray, source: np.ndarray, mode: str) -> np.ndarray:
    """Blend normalized ``source`` onto normalized ``base`` (both in ``[0, 1]``)."""
    if mode == "normal":
        return np.broadcast_to(source, base.shape).astype(np.float32)
    if mode == "screen":
        return 1.0 - (1.0 - base) * (1.0 - source)
    if mode == "overlay":
        return np.where(
            base <= 0.5,
            2.0 * base * source,
            1.0 - 2.0 * (1.0 - base) * (1.0 - source),
        )
    if mode == "soft-light":
        darkened = np.where(
            base <= 0.25,
            ((16.0 * base - 12.0) * base + 4.0) * base,
            np.sqrt(base),
        )
        return np.where(
            source <= 0.5,
            base - (1.0 - 2.0 * source) * base * (1.0 - base),
            base + (2.0 * source - 1.0) * (darkened - base),
        )
    raise ParameterError(f"Unknown blend mode: {mode}")


def cover_size(
    source_size: Tuple[int, int],
    frame_size: Tuple[int, int],
    overscan: float = 1.0,
) -> Tuple[int, int]:
    """Size that aspect-fills ``frame_size``, optionally enlarged by ``overscan``."""
    src_w, src_h = source_size
    dst_w, dst_h = frame_size
    scale = max(dst_w / src_w, dst_h / src_h) * overscan
    return (max(1, int(round(src_w * scale))), max(1, int(round(src_h * scale))))


class FrameCompositor:
    """Render a preset over a background image at arbitrary timestamps.

    The compositor holds no cross-frame state: every call to `render` derives
    its clocks from the timestamp alone, so preview scrubbing and sequential
    export share one instance safely.
    """

    def __init__(
        self,
        preset: EffectPreset,
        background: np.ndarray,
        frame_size: Tuple[int, int],
        *,
        noise_ring: Optional[NoiseTextureRing] = None,
        particles: Sequence[Particle] = (),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        preset.validate()
        if background is None or background.ndim != 3 or background.shape[2] != 3:
            raise ParameterError("Background must be a BGR image of shape (h, w, 3)")
        if preset.noise is not None and noise_ring is None:
            raise ParameterError(f"Preset '{preset.name}' needs a baked noise texture")

        self.preset = preset
        self.frame_size = (int(frame_size[0]), int(frame_size[1]))
        self.noise_ring = noise_ring
        self.particles = tuple(particles)
        self.logger = logger or LOGGER
        self._base_color = tuple(float(channel) for channel in preset.base_color)

        overscan = preset.motion.overscan if preset.motion else 1.0
        source_size = (background.shape[1], background.shape[0])
        draw_w, draw_h = cover_size(source_size, self.frame_size, overscan)
        self._background = cv2.resize(background, (draw_w, draw_h), interpolation=cv2.INTER_AREA)
        self._background.setflags(write=False)

        self._motion_clock = preset.motion.clock() if preset.motion else None
        self._motion_path = preset.motion.path() if preset.motion else None
        self._blur_clock = preset.blur.clock() if preset.blur else None
        if preset.noise is not None:
            self._noise_clock = preset.noise.clock()
            self._opacity_track, self._contrast_track, self._brightness_track = preset.noise.tracks()
        else:
            self._noise_clock = None

    @property
    def width(self) -> int:
        return self.frame_size[0]

    @property
    def height(self) -> int:
        return self.frame_size[1]

    # ------------------------------------------------------------------
    # Animated parameters
    # ------------------------------------------------------------------

    def offset_percent(self, timestamp: float) -> Tuple[float, float]:
        if self._motion_clock is None or self._motion_path is None:
            return (0.0, 0.0)
        return self._motion_path.value(self._motion_clock.evaluate(timestamp))

    def blur_radius(self, timestamp: float) -> float:
        if self._blur_clock is None or self.preset.blur is None:
            return 0.0
        return triangle_wave(self._blur_clock, timestamp, self.preset.blur.amount_px)

    def overlay_levels(self, timestamp: float) -> Tuple[float, Optional[float], Optional[float]]:
        """Return ``(opacity, contrast, brightness)`` of the noise overlay."""
        if self._noise_clock is None:
            return (0.0, None, None)
        sample = self._noise_clock.evaluate(timestamp)
        opacity = self._opacity_track.value(sample)
        contrast = self._contrast_track.value(sample) if self._contrast_track else None
        brightness = self._brightness_track.value(sample) if self._brightness_track else None
        return (opacity, contrast, brightness)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, timestamp: float) -> Frame:
        layer = self._draw_background(timestamp)
        canvas = layer.astype(np.float32)
        if self.particles:
            self._draw_particles(canvas, timestamp)
        if self.noise_ring is not None:
            self._draw_noise(canvas, timestamp)
        pixels = np.clip(np.rint(canvas), 0, 255).astype(np.uint8)
        return Frame(timestamp=timestamp, pixels=pixels)

    def _draw_background(self, timestamp: float) -> np.ndarray:
        width, height = self.frame_size
        draw_h, draw_w = self._background.shape[:2]
        dx, dy = self.offset_percent(timestamp)
        x = (width - draw_w) / 2.0 + dx / 100.0 * width
        y = (height - draw_h) / 2.0 + dy / 100.0 * height
        matrix = np.float32([[1, 0, x], [0, 1, y]])
        layer = cv2.warpAffine(
            self._background,
            matrix,
            (width, height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=self._base_color,
        )

        radius = self.blur_radius(timestamp)
        if radius >= _MIN_BLUR_SIGMA:
            layer = cv2.GaussianBlur(layer, (0, 0), sigmaX=radius, sigmaY=radius)
        return layer

    def _draw_particles(self, canvas: np.ndarray, timestamp: float) -> None:
        height, width = canvas.shape[:2]
        color = np.asarray(
            self.preset.particles.color_bgr if self.preset.particles else (255, 255, 255),
            dtype=np.float32,
        )
        for particle in self.particles:
            opacity = particle.opacity_at(timestamp)
            if opacity <= 0.0:
                continue
            scale = particle.scale_at(timestamp)
            core = particle.size_px * scale / 2.0
            sigma = max(0.5, particle.size_px * scale)
            reach = int(math.ceil(core + sigma * 3.0))

            cx = particle.position_percent[0] / 100.0 * width + particle.jitter_px[0]
            cy = particle.position_percent[1] / 100.0 * height + particle.jitter_px[1]
            x0 = max(0, int(math.floor(cx)) - reach)
            x1 = min(width, int(math.floor(cx)) + reach + 1)
            y0 = max(0, int(math.floor(cy)) - reach)
            y1 = min(height, int(math.floor(cy)) + reach + 1)
            if x0 >= x1 or y0 >= y1:
                continue

            xs = np.arange(x0, x1, dtype=np.float32) + 0.5 - cx
            ys = np.arange(y0, y1, dtype=np.float32) + 0.5 - cy
            dist_sq = ys[:, np.newaxis] ** 2 + xs[np.newaxis, :] ** 2
            glow = particle.glow_opacity * np.exp(-dist_sq / (2.0 * sigma * sigma))
            alpha = opacity * np.maximum((dist_sq <= core * core).astype(np.float32), glow)
            alpha = alpha[..., np.newaxis]

            patch = canvas[y0:y1, x0:x1]
            canvas[y0:y1, x0:x1] = patch + (color - patch) * alpha

    def _draw_noise(self, canvas: np.ndarray, timestamp: float) -> None:
        opacity, contrast, brightness = self.overlay_levels(timestamp)
        if opacity <= 0.0:
            return

        ring = self.noise_ring
        alpha = ring.alpha_at(timestamp)
        height, width = canvas.shape[:2]
        if alpha.shape != (height, width):
            alpha = cv2.resize(alpha, (width, height), interpolation=cv2.INTER_LINEAR)

        tint = apply_brightness_contrast(
            np.asarray(ring.tint_bgr, dtype=np.float32),
            brightness,
            contrast,
        ) / 255.0

        base = canvas / 255.0
        blended = blend(base, tint, self.preset.noise.blend_mode)
        weight = (alpha * opacity)[..., np.newaxis]
        canvas[...] = (base + (blended - base) * weight) * 255.0


__all__ = [
    "FrameCompositor",
    "apply_brightness_contrast",
    "blend",
    "contrast_factor",
    "cover_size",
]
