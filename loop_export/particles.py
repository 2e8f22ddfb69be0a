"""Seeded twinkle particle timelines."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from loop_export.clock import sine_in_out
from loop_export.errors import ParameterError


@dataclass(frozen=True)
class Zone:
    """Rectangular spawn area in percentage coordinates."""

    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class TwinkleTiming:
    """Random ranges ``(low, high)`` for one particle family."""

    fade_in: Tuple[float, float] = (2.0, 3.0)
    hold: Tuple[float, float] = (0.2, 0.8)
    fade_out: Tuple[float, float] = (2.0, 3.0)
    peak_opacity: Tuple[float, float] = (0.5, 0.8)
    glow_opacity: Tuple[float, float] = (0.9, 0.9)
    safety_margin: float = 0.9


AMBIENT_TIMING = TwinkleTiming()
CLUSTER_TIMING = TwinkleTiming(
    fade_in=(1.5, 3.0),
    hold=(0.5, 1.5),
    fade_out=(1.5, 3.0),
    peak_opacity=(0.6, 1.0),
    glow_opacity=(0.4, 0.9),
    safety_margin=0.95,
)


@dataclass(frozen=True)
class ParticleSettings:
    count: int = 25
    size_px: float = 2.0
    loop_duration: float = 7.0
    zones: Tuple[Zone, ...] = ()
    timing: TwinkleTiming = AMBIENT_TIMING
    size_variation: Tuple[float, float] = (1.0, 1.0)
    margin_percent: float = 5.0
    cluster_fraction: float = 0.9
    cluster_zone_count: int = 3
    jitter_count: int = 0
    jitter_px: Tuple[float, float] = (2.0, 4.0)
    rest_scale: float = 0.7
    peak_scale: float = 1.3
    color_bgr: Tuple[int, int, int] = (255, 255, 255)


@dataclass(frozen=True)
class Particle:
    position_percent: Tuple[float, float]
    size_px: float
    peak_opacity: float
    fade_in: float
    hold: float
    fade_out: float
    start_offset: float
    loop_duration: float
    glow_opacity: float = 0.9
    jitter_px: Tuple[float, float] = (0.0, 0.0)
    rest_scale: float = 0.7
    peak_scale: float = 1.3

    @property
    def cycle_duration(self) -> float:
        return self.fade_in + self.hold + self.fade_out

    def envelope(self, timestamp: float) -> float:
        """Eased 0..1 envelope shared by opacity and scale."""
        local = (timestamp % self.loop_duration) - self.start_offset
        if local < 0 or local >= self.cycle_duration:
            return 0.0
        if local < self.fade_in:
            return sine_in_out(local / self.fade_in) if self.fade_in > 0 else 1.0
        local -= self.fade_in
        if local < self.hold:
            return 1.0
        local -= self.hold
        if self.fade_out <= 0:
            return 0.0
        return 1.0 - sine_in_out(local / self.fade_out)

    def opacity_at(self, timestamp: float) -> float:
        return self.peak_opacity * self.envelope(timestamp)

    def scale_at(self, timestamp: float) -> float:
        return self.rest_scale + (self.peak_scale - self.rest_scale) * self.envelope(timestamp)


def fit_timeline(
    fade_in: float,
    hold: float,
    fade_out: float,
    loop_duration: float,
    safety_margin: float,
) -> Tuple[float, float, float]:
    """Scale the three durations down proportionally so they fit one loop."""
    total = fade_in + hold + fade_out
    limit = loop_duration * safety_margin
    if total > limit and total > 0:
        scale = limit / total
        return fade_in * scale, hold * scale, fade_out * scale
    return fade_in, hold, fade_out


class ParticleScheduler:
    """Generate reproducible particle sets for a given loop duration."""

    def __init__(self, settings: ParticleSettings) -> None:
        if settings.count <= 0:
            raise ParameterError(f"Particle count must be positive, got {settings.count}")
        if settings.loop_duration <= 0:
            raise ParameterError("Particle loop duration must be positive")
        if not 0 < settings.timing.safety_margin <= 1:
            raise ParameterError("Particle safety margin must be within (0, 1]")
        self.settings = settings

    def _position(self, rng: np.random.Generator, index: int) -> Tuple[float, float]:
        settings = self.settings
        zones = settings.zones
        if not zones:
            span = 100.0 - settings.margin_percent * 2
            x = settings.margin_percent + rng.random() * span
            y = settings.margin_percent + rng.random() * span
            return (x, y)

        zone = zones[int(rng.integers(0, len(zones)))]
        if index < settings.count * settings.cluster_fraction:
            upper = zones[: max(1, min(settings.cluster_zone_count, len(zones)))]
            selected = upper[int(rng.integers(0, len(upper)))]
            x = selected.left + rng.random() * selected.width
            y = selected.top + (rng.random() ** 2) * selected.height * 0.8
            return (x, y)
        return (
            zone.left + rng.random() * zone.width,
            zone.top + rng.random() * zone.height,
        )

    def _jitter(self, rng: np.random.Generator, positions: Sequence[Tuple[float, float]]) -> List[Tuple[float, float]]:
        jitter: List[Tuple[float, float]] = [(0.0, 0.0)] * len(positions)
        if self.settings.jitter_count <= 0:
            return jitter
        low, high = self.settings.jitter_px
        topmost = sorted(range(len(positions)), key=lambda i: positions[i][1])
        for index in topmost[: self.settings.jitter_count]:
            distance = rng.uniform(low, high)
            angle = rng.random() * math.pi * 2
            jitter[index] = (math.cos(angle) * distance, math.sin(angle) * distance)
        return jitter

    def generate(self, seed: int = 0) -> Tuple[Particle, ...]:
        settings = self.settings
        timing = settings.timing
        loop = settings.loop_duration
        rng = np.random.default_rng(seed)

        drafts = []
        for index in range(settings.count):
            position = self._position(rng, index)
            size = settings.size_px * rng.uniform(*settings.size_variation)
            fade_in, hold, fade_out = fit_timeline(
                rng.uniform(*timing.fade_in),
                rng.uniform(*timing.hold),
                rng.uniform(*timing.fade_out),
                loop,
                timing.safety_margin,
            )
            peak = rng.uniform(*timing.peak_opacity)
            glow = rng.uniform(*timing.glow_opacity)
            base_start = (index * (loop / settings.count)) % loop
            start = max(0.0, min(loop - (fade_in + hold + fade_out), base_start))
            drafts.append((position, size, peak, glow, fade_in, hold, fade_out, start))

        jitter = self._jitter(rng, [draft[0] for draft in drafts])
        return tuple(
            Particle(
                position_percent=(float(position[0]), float(position[1])),
                size_px=float(size),
                peak_opacity=float(peak),
                fade_in=float(fade_in),
                hold=float(hold),
                fade_out=float(fade_out),
                start_offset=float(start),
                loop_duration=loop,
                glow_opacity=float(glow),
                jitter_px=jitter[index],
                rest_scale=settings.rest_scale,
                peak_scale=settings.peak_scale,
            )
            for index, (position, size, peak, glow, fade_in, hold, fade_out, start) in enumerate(drafts)
        )


__all__ = [
    "AMBIENT_TIMING",
    "CLUSTER_TIMING",
    "Particle",
    "ParticleScheduler",
    "ParticleSettings",
    "TwinkleTiming",
    "Zone",
    "fit_timeline",
]
