"""Looping animation clocks, easing curves and piecewise value tracks."""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from loop_export.errors import ParameterError

Easing = Callable[[float], float]

_FRACTION_TOLERANCE = 1e-9


def clamp(value: float, min_value: float = 0.0, max_value: float = 1.0) -> float:
    return max(min_value, min(max_value, value))


def linear(t: float) -> float:
    return t


def sine_in(t: float) -> float:
    return 1 - math.cos(t * math.pi / 2)


def sine_out(t: float) -> float:
    return math.sin(t * math.pi / 2)


def sine_in_out(t: float) -> float:
    return (1 - math.cos(t * math.pi)) / 2


def ease_in(t: float) -> float:
    return t * t


def ease_out(t: float) -> float:
    return 1 - (1 - t) * (1 - t)


def ease_in_out(t: float) -> float:
    if t < 0.5:
        return 2 * t * t
    return 1 - ((-2 * t + 2) ** 2) / 2


def ease_in_out_cubic(t: float) -> float:
    if t < 0.5:
        return 4 * t * t * t
    return 1 - ((-2 * t + 2) ** 3) / 2


EASING_FUNCTIONS: Dict[str, Easing] = {
    "linear": linear,
    "sine_in": sine_in,
    "sine_out": sine_out,
    "sine_in_out": sine_in_out,
    "ease_in": ease_in,
    "ease_out": ease_out,
    "ease_in_out": ease_in_out,
    "ease_in_out_cubic": ease_in_out_cubic,
}


def resolve_easing(name: Optional[str]) -> Easing:
    if not name:
        return linear
    try:
        return EASING_FUNCTIONS[name]
    except KeyError:
        raise ParameterError(f"Unknown easing function: {name}") from None


@dataclass(frozen=True)
class PhaseDefinition:
    """Sub-interval `[start_fraction, end_fraction)` of a loop with its easing."""

    start_fraction: float
    end_fraction: float
    easing: Easing = linear
    name: str = ""

    @property
    def span(self) -> float:
        return self.end_fraction - self.start_fraction


@dataclass(frozen=True)
class PhaseSample:
    """Result of evaluating a clock at one timestamp."""

    phase_index: int
    phase_progress: float
    eased_value: float


def uniform_phases(count: int, easing: Easing = linear) -> Tuple[PhaseDefinition, ...]:
    """Split the loop into `count` equal contiguous phases sharing one easing."""
    if count <= 0:
        raise ParameterError(f"Phase count must be positive, got {count}")
    return tuple(
        PhaseDefinition(index / count, (index + 1) / count, easing)
        for index in range(count)
    )


class AnimationClock:
    """Stateless mapping from absolute time to a phase and its eased progress.

    Time is reduced modulo ``loop_duration`` before evaluation, so a clock can be
    queried with any timestamp (including negative or far-future ones) and two
    clocks with different loop lengths never need to be synchronised.
    """

    def __init__(
        self,
        loop_duration: float,
        phases: Optional[Sequence[PhaseDefinition]] = None,
    ) -> None:
        if loop_duration <= 0:
            raise ParameterError(f"Loop duration must be positive, got {loop_duration}")
        self.loop_duration = float(loop_duration)
        self.phases: Tuple[PhaseDefinition, ...] = tuple(phases) if phases else uniform_phases(1)
        self._validate_phases()
        self._starts = [phase.start_fraction for phase in self.phases]

    def _validate_phases(self) -> None:
        expected_start = 0.0
        for index, phase in enumerate(self.phases):
            if abs(phase.start_fraction - expected_start) > _FRACTION_TOLERANCE:
                raise ParameterError(
                    f"Phase {index} starts at {phase.start_fraction}, expected {expected_start}"
                )
            if phase.end_fraction <= phase.start_fraction:
                raise ParameterError(f"Phase {index} has an empty or negative span")
            expected_start = phase.end_fraction
        if abs(expected_start - 1.0) > _FRACTION_TOLERANCE:
            raise ParameterError(f"Phases must end at 1.0, last phase ends at {expected_start}")

    def loop_progress(self, timestamp: float) -> float:
        """Return the normalized position within the loop in ``[0, 1)``."""
        t_mod = timestamp % self.loop_duration
        progress = t_mod / self.loop_duration
        # float modulo can land exactly on the loop length for tiny negatives
        return progress if progress < 1.0 else 0.0

    def evaluate(self, timestamp: float) -> PhaseSample:
        fraction = self.loop_progress(timestamp)
        index = max(0, bisect_right(self._starts, fraction) - 1)
        phase = self.phases[index]
        progress = clamp((fraction - phase.start_fraction) / phase.span)
        return PhaseSample(
            phase_index=index,
            phase_progress=progress,
            eased_value=phase.easing(progress),
        )


@dataclass(frozen=True)
class PiecewiseTrack:
    """Values interpolated between consecutive stops, one segment per clock phase."""

    stops: Tuple[float, ...]

    def value(self, sample: PhaseSample) -> float:
        start = self.stops[sample.phase_index]
        end = self.stops[sample.phase_index + 1]
        return start + (end - start) * sample.eased_value

    def check_clock(self, clock: AnimationClock) -> None:
        if len(self.stops) != len(clock.phases) + 1:
            raise ParameterError(
                f"Track has {len(self.stops)} stops but clock has {len(clock.phases)} phases"
            )


@dataclass(frozen=True)
class PosePath:
    """2-D poses visited in order, one transition per clock phase."""

    poses: Tuple[Tuple[float, float], ...]

    def value(self, sample: PhaseSample) -> Tuple[float, float]:
        x0, y0 = self.poses[sample.phase_index]
        x1, y1 = self.poses[sample.phase_index + 1]
        eased = sample.eased_value
        return (x0 + (x1 - x0) * eased, y0 + (y1 - y0) * eased)

    def check_clock(self, clock: AnimationClock) -> None:
        if len(self.poses) != len(clock.phases) + 1:
            raise ParameterError(
                f"Path has {len(self.poses)} poses but clock has {len(clock.phases)} phases"
            )


def triangle_clock(loop_duration: float) -> AnimationClock:
    """Two linear half-loop phases: rise then fall."""
    return AnimationClock(
        loop_duration,
        (
            PhaseDefinition(0.0, 0.5, linear, "rise"),
            PhaseDefinition(0.5, 1.0, linear, "fall"),
        ),
    )


def triangle_wave(clock: AnimationClock, timestamp: float, amplitude: float) -> float:
    """Evaluate a rise/fall clock as a triangular wave peaking at ``amplitude``."""
    sample = clock.evaluate(timestamp)
    if sample.phase_index == 0:
        return amplitude * sample.eased_value
    return amplitude * (1.0 - sample.eased_value)


__all__ = [
    "AnimationClock",
    "EASING_FUNCTIONS",
    "Easing",
    "PhaseDefinition",
    "PhaseSample",
    "PiecewiseTrack",
    "PosePath",
    "clamp",
    "ease_in",
    "ease_in_out",
    "ease_in_out_cubic",
    "ease_out",
    "linear",
    "resolve_easing",
    "sine_in",
    "sine_in_out",
    "sine_out",
    "triangle_clock",
    "triangle_wave",
    "uniform_phases",
]
