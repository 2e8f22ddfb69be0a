"""Effect presets expressed as data tables driving the shared engines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from loop_export.clock import (
    AnimationClock,
    Easing,
    PhaseDefinition,
    PiecewiseTrack,
    PosePath,
    linear,
    sine_in_out,
    sine_out,
    triangle_clock,
    uniform_phases,
)
from loop_export.errors import ParameterError
from loop_export.noise import NoiseField
from loop_export.particles import AMBIENT_TIMING, CLUSTER_TIMING, ParticleSettings, Zone

BLEND_MODES = ("normal", "screen", "overlay", "soft-light")


@dataclass(frozen=True)
class MotionSettings:
    """Background pan: one pose transition per phase, offsets in frame percent."""

    loop_duration: float
    phases: Tuple[PhaseDefinition, ...]
    poses: Tuple[Tuple[float, float], ...]
    overscan: float = 1.0

    def clock(self) -> AnimationClock:
        return AnimationClock(self.loop_duration, self.phases)

    def path(self) -> PosePath:
        return PosePath(self.poses)


@dataclass(frozen=True)
class BlurSettings:
    amount_px: float = 4.0
    loop_duration: float = 7.5

    def clock(self) -> AnimationClock:
        return triangle_clock(self.loop_duration)


@dataclass(frozen=True)
class NoiseOverlaySettings:
    """Noise texture parameters plus the envelope applied while compositing.

    ``opacity``, ``contrast`` and ``brightness`` hold one stop per phase
    boundary; ``None`` disables that adjustment. ``texture_size`` of ``None``
    bakes the texture at the output frame size.
    """

    loop_duration: float = 7.0
    opacity: Tuple[float, ...] = (1.0, 1.0)
    contrast: Optional[Tuple[float, ...]] = None
    brightness: Optional[Tuple[float, ...]] = None
    easing: Easing = linear
    blend_mode: str = "overlay"
    base_frequency: float = 0.3
    octaves: int = 1
    color_tint: Tuple[int, int, int] = (112, 66, 20)
    frame_count: int = 1
    frame_stride: float = 15.0
    contrast_exponent: float = 1.0
    alpha_scale: float = 1.0
    update_rate: float = 0.5
    texture_size: Optional[Tuple[int, int]] = None

    @property
    def phase_count(self) -> int:
        return len(self.opacity) - 1

    def clock(self) -> AnimationClock:
        return AnimationClock(self.loop_duration, uniform_phases(self.phase_count, self.easing))

    def tracks(self) -> Tuple[PiecewiseTrack, Optional[PiecewiseTrack], Optional[PiecewiseTrack]]:
        opacity = PiecewiseTrack(tuple(self.opacity))
        contrast = PiecewiseTrack(tuple(self.contrast)) if self.contrast else None
        brightness = PiecewiseTrack(tuple(self.brightness)) if self.brightness else None
        return opacity, contrast, brightness

    def field_for(self, frame_size: Tuple[int, int], seed: int = 0) -> NoiseField:
        width, height = self.texture_size or frame_size
        return NoiseField(
            width=int(width),
            height=int(height),
            base_frequency=self.base_frequency,
            octaves=self.octaves,
            color_tint=self.color_tint,
            frame_count=self.frame_count,
            frame_stride=self.frame_stride,
            contrast=self.contrast_exponent,
            alpha_scale=self.alpha_scale,
            update_rate=self.update_rate,
            seed=seed,
        )

    def validate(self) -> None:
        if self.blend_mode not in BLEND_MODES:
            raise ParameterError(f"Unknown blend mode: {self.blend_mode}")
        if self.phase_count < 1:
            raise ParameterError("Noise overlay needs at least two opacity stops")
        clock = self.clock()
        for track in self.tracks():
            if track is not None:
                track.check_clock(clock)


@dataclass(frozen=True)
class EffectPreset:
    name: str
    description: str = ""
    base_color: Tuple[int, int, int] = (0, 0, 0)
    motion: Optional[MotionSettings] = None
    blur: Optional[BlurSettings] = None
    noise: Optional[NoiseOverlaySettings] = None
    particles: Optional[ParticleSettings] = None

    def validate(self) -> None:
        if self.motion is not None:
            self.motion.path().check_clock(self.motion.clock())
            if self.motion.overscan < 1.0:
                raise ParameterError("Motion overscan must be at least 1.0")
        if self.blur is not None and self.blur.amount_px < 0:
            raise ParameterError("Blur amount must not be negative")
        if self.noise is not None:
            self.noise.validate()


SPECIAL_ONE_V3 = EffectPreset(
    name="special-one-v3",
    description="Left, up and rebound pan with breathing blur and a tan turbulence overlay",
    motion=MotionSettings(
        loop_duration=7.5,
        phases=(
            PhaseDefinition(0.0, 1 / 3, sine_out, "left"),
            PhaseDefinition(1 / 3, 2 / 3, sine_out, "up"),
            PhaseDefinition(2 / 3, 1.0, sine_in_out, "rebound"),
        ),
        poses=((0.0, 0.0), (-3.0, 0.0), (-3.0, -2.0), (0.0, 0.0)),
        overscan=1.08,
    ),
    blur=BlurSettings(amount_px=4.0, loop_duration=7.5),
    noise=NoiseOverlaySettings(
        loop_duration=7.0,
        opacity=(0.20, 0.35, 0.50, 0.65, 0.75),
        contrast=(1.2, 1.4, 1.6, 1.8, 2.0),
        brightness=(0.95, 0.90, 0.85, 0.80, 0.75),
        blend_mode="overlay",
        base_frequency=1.2 / 200,
        octaves=4,
        color_tint=(139, 90, 43),
        alpha_scale=0.6,
    ),
)

SEPIA_GRAIN = EffectPreset(
    name="sepia-grain",
    description="Still background under a slowly cross-fading sepia film grain",
    noise=NoiseOverlaySettings(
        loop_duration=7.5,
        opacity=(0.4, 0.4),
        blend_mode="soft-light",
        base_frequency=0.3,
        octaves=1,
        color_tint=(112, 66, 20),
        frame_count=10,
        frame_stride=15.0,
        contrast_exponent=1.2,
        update_rate=0.5,
        texture_size=(400, 400),
    ),
)

TWINKLE = EffectPreset(
    name="twinkle",
    description="Ambient twinkling stars scattered across the frame",
    particles=ParticleSettings(
        count=25,
        size_px=2.0,
        loop_duration=7.0,
        timing=AMBIENT_TIMING,
        peak_scale=1.3,
    ),
)

CONCENTRATED_TWINKLE = EffectPreset(
    name="concentrated-twinkle",
    description="Stars clustered over a central figure with a gentle blur",
    blur=BlurSettings(amount_px=2.0, loop_duration=7.0),
    particles=ParticleSettings(
        count=40,
        size_px=2.0,
        loop_duration=7.0,
        zones=(
            Zone(left=38.0, top=18.0, width=24.0, height=30.0),
            Zone(left=26.0, top=24.0, width=14.0, height=20.0),
            Zone(left=60.0, top=24.0, width=14.0, height=20.0),
            Zone(left=34.0, top=48.0, width=32.0, height=30.0),
        ),
        timing=CLUSTER_TIMING,
        size_variation=(0.5, 1.5),
        jitter_count=50,
        peak_scale=1.4,
    ),
)

PRESETS: Dict[str, EffectPreset] = {
    preset.name: preset
    for preset in (SPECIAL_ONE_V3, SEPIA_GRAIN, TWINKLE, CONCENTRATED_TWINKLE)
}


def get_preset(name: str) -> EffectPreset:
    try:
        return PRESETS[name]
    except KeyError:
        known = ", ".join(sorted(PRESETS))
        raise ParameterError(f"Unknown effect preset '{name}' (known: {known})") from None


__all__ = [
    "BLEND_MODES",
    "BlurSettings",
    "CONCENTRATED_TWINKLE",
    "EffectPreset",
    "MotionSettings",
    "NoiseOverlaySettings",
    "PRESETS",
    "SEPIA_GRAIN",
    "SPECIAL_ONE_V3",
    "TWINKLE",
    "get_preset",
]
