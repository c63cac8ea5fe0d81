"""Threshold calibration from ambient / practice flux samples."""

from __future__ import annotations

from enum import Enum

import numpy as np


class CalibrationState(str, Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"


def derive_threshold(samples, floor: float) -> float | None:
    """Derive an onset threshold from collected flux sums.

    The threshold sits two inter-quartile half-spreads above the median:
    ``max(floor, median + 2 * (p75 - median))``. Percentiles are taken by
    index into the sorted samples (no interpolation). Returns ``None`` when
    there are no samples.
    """
    ordered = np.sort(np.asarray(samples, dtype=np.float64))
    n = len(ordered)
    if n == 0:
        return None

    median = ordered[n // 2]
    q75 = ordered[int(n * 0.75)]
    return float(max(floor, median + 2.0 * (q75 - median)))


class Calibration:
    """Sample collector for a single calibration run.

    Time is taken from frame timestamps, so the run completes after
    ``duration_ms`` of *audio*, not wall-clock time. The first frame seen
    starts the clock.

    Parameters
    ----------
    duration_ms:
        Length of the calibration window.
    floor:
        Lowest threshold the calibration may produce.
    previous_threshold:
        Base threshold in effect when calibration began; restored on cancel.
    """

    def __init__(self, duration_ms: float, floor: float, previous_threshold: float) -> None:
        if not duration_ms > 0:
            raise ValueError(f"Calibration duration must be positive, got {duration_ms}")
        self.duration_ms = float(duration_ms)
        self.floor = float(floor)
        self.previous_threshold = float(previous_threshold)
        self.samples: list[float] = []
        self.started_at: float | None = None

    def add_sample(self, timestamp: float, flux_sum: float) -> bool:
        """Record one frame's flux sum. Returns True once the window has elapsed."""
        if self.started_at is None:
            self.started_at = timestamp
        self.samples.append(flux_sum)
        return self.elapsed(timestamp) >= self.duration_ms

    def elapsed(self, timestamp: float) -> float:
        if self.started_at is None:
            return 0.0
        return timestamp - self.started_at

    def result(self) -> float | None:
        return derive_threshold(self.samples, self.floor)
