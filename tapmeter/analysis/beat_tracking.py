"""Alignment of detected taps against an expected beat grid."""

from __future__ import annotations

import math
from enum import Enum
from typing import Iterable

import numpy as np

from tapmeter.analysis.models import BeatAccuracy, BeatAnalysis, TapEvent, TimingStats


class TrackerState(str, Enum):
    IDLE = "idle"  # no expected beats
    ARMED = "armed"  # expected beats, no taps yet
    ACCUMULATING = "accumulating"


def expected_beat_grid(bpm: float, start_ms: float = 0.0, count: int = 32) -> list[float]:
    """Metronome grid: ``count`` beats at ``bpm`` starting at ``start_ms``."""
    if bpm <= 0:
        raise ValueError(f"bpm must be positive, got {bpm}")
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    interval = 60000.0 / bpm
    return [float(start_ms + i * interval) for i in range(count)]


class BeatTracker:
    """Matches taps to expected beats and derives timing statistics.

    Analysis is recomputed from scratch on every call; results are a pure
    function of the expected beats and the taps recorded so far.
    """

    def __init__(self, tolerance_ms: float = 50.0, perfect_window_ms: float = 10.0) -> None:
        self._expected: list[float] = []
        self._detected: list[TapEvent] = []
        self.perfect_window_ms = perfect_window_ms
        self.set_tolerance(tolerance_ms)

    @property
    def tolerance_ms(self) -> float:
        return self._tolerance_ms

    @property
    def expected_beats(self) -> list[float]:
        return list(self._expected)

    @property
    def detected_beats(self) -> list[TapEvent]:
        return list(self._detected)

    @property
    def state(self) -> TrackerState:
        if not self._expected:
            return TrackerState.IDLE
        if not self._detected:
            return TrackerState.ARMED
        return TrackerState.ACCUMULATING

    def set_expected_beats(self, beats: Iterable[float]) -> None:
        """Replace the expected grid (ascending ms timestamps expected)."""
        self._expected = [float(b) for b in beats]

    def add_detected_beat(self, tap: TapEvent) -> None:
        self._detected.append(tap)

    def set_tolerance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError(f"Tolerance must be non-negative, got {ms}")
        self._tolerance_ms = float(ms)

    def clear(self) -> None:
        self._expected = []
        self._detected = []

    def analyze_beat_accuracy(self) -> list[BeatAnalysis]:
        """One entry per expected beat, matched to the nearest tap.

        Ties between equidistant taps go to the earliest recorded one.
        """
        analysis = []
        for expected_time in self._expected:
            closest: TapEvent | None = None
            min_diff = math.inf
            for tap in self._detected:
                diff = abs(tap.timestamp - expected_time)
                if diff < min_diff:
                    min_diff = diff
                    closest = tap

            if closest is not None and min_diff <= self._tolerance_ms:
                error = closest.timestamp - expected_time
                if abs(error) <= self.perfect_window_ms:
                    accuracy = BeatAccuracy.PERFECT
                elif error > 0:
                    accuracy = BeatAccuracy.LATE
                else:
                    accuracy = BeatAccuracy.EARLY
                actual_time = closest.timestamp
            else:
                error = min_diff
                accuracy = BeatAccuracy.MISSED
                actual_time = None

            analysis.append(BeatAnalysis(
                expected_time=expected_time,
                actual_time=actual_time,
                error=error,
                accuracy=accuracy,
                intensity=closest.intensity if closest is not None else 0.0,
            ))
        return analysis

    def get_timing_stats(self) -> TimingStats:
        """Statistics over the absolute errors of non-missed beats."""
        analysis = self.analyze_beat_accuracy()
        hits = [b for b in analysis if b.accuracy != BeatAccuracy.MISSED]
        if not hits:
            return TimingStats()

        errors = np.abs(np.array([b.error for b in hits], dtype=np.float64))
        average_error = float(errors.mean())
        standard_deviation = float(errors.std())
        accuracy_percentage = len(hits) / len(self._expected) * 100.0
        consistency_score = max(0.0, 100.0 - standard_deviation * 2.0)

        return TimingStats(
            average_error=average_error,
            standard_deviation=standard_deviation,
            accuracy_percentage=accuracy_percentage,
            consistency_score=consistency_score,
        )
