"""Progress events plus ETA formatting for long-running export stages."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from time import perf_counter
from typing import Callable, Optional

from loop_export.models import ProgressEvent

ProgressCallback = Callable[[ProgressEvent], None]


def _format_duration(seconds: float) -> str:
    """Return a compact human-readable duration string."""
    total_seconds = int(round(seconds))
    if total_seconds <= 0:
        return "<1s"
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds_remaining = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds_remaining:02d}s"
    if minutes:
        return f"{minutes}m{seconds_remaining:02d}s"
    return f"{seconds_remaining}s"


def eta_string(elapsed: float, completed: int, total: int) -> str:
    """Format an ETA string given elapsed time and progress counters."""
    if completed <= 0 or total <= 0 or completed > total or elapsed <= 0.0:
        return "ETA estimating"

    progress = completed / total
    estimated_total = elapsed / progress
    remaining = max(0.0, estimated_total - elapsed)
    finish_time = datetime.now() + timedelta(seconds=remaining)
    return f"ETA {_format_duration(remaining)} (finish {finish_time.strftime('%H:%M:%S')})"


class ProgressReporter:
    """Forward events to an optional callback and log periodic summaries."""

    def __init__(
        self,
        callback: Optional[ProgressCallback] = None,
        *,
        logger: logging.Logger,
    ) -> None:
        self.callback = callback
        self.logger = logger

    def emit(self, stage: str, fraction: float, message: str = "") -> None:
        event = ProgressEvent(stage=stage, fraction=max(0.0, min(1.0, fraction)), message=message)
        if self.callback is not None:
            self.callback(event)

    def counter(self, stage: str, total: int, label: str) -> "StageCounter":
        return StageCounter(self, stage, total, label)


class StageCounter:
    """Per-item progress for a stage with a known item count."""

    def __init__(self, reporter: ProgressReporter, stage: str, total: int, label: str) -> None:
        self.reporter = reporter
        self.stage = stage
        self.total = max(1, total)
        self.label = label
        self.completed = 0
        self.interval = max(1, self.total // 20)
        self.started = perf_counter()

    def advance(self, message: str = "") -> None:
        self.completed += 1
        self.reporter.emit(self.stage, self.completed / self.total, message)
        if self.completed % self.interval == 0 or self.completed == self.total:
            elapsed = perf_counter() - self.started
            self.reporter.logger.info(
                "%s progress: %s/%s (%0.1f%%, %s)",
                self.label,
                self.completed,
                self.total,
                (self.completed / self.total) * 100.0,
                eta_string(elapsed, self.completed, self.total),
            )


__all__ = ["ProgressCallback", "ProgressReporter", "StageCounter", "eta_string"]
