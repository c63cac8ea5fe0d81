"""Practice session wiring: detector output feeds history and beat tracker."""

from __future__ import annotations

import logging
from typing import Iterable

from tapmeter.analysis.beat_tracking import BeatTracker, expected_beat_grid
from tapmeter.analysis.history import TapHistory
from tapmeter.analysis.models import BeatAnalysis, DrumType, Frame, TapEvent, TimingStats
from tapmeter.analysis.onset import OnsetDetector, manual_tap
from tapmeter.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class TapSession:
    """One practice session: a detector, its tap history and a beat tracker.

    Every accepted tap, detected or entered by hand, is appended to the
    history and recorded by the tracker in detection order.
    """

    def __init__(
        self,
        detector: OnsetDetector,
        tracker: BeatTracker | None = None,
        history: TapHistory | None = None,
    ) -> None:
        self.detector = detector
        self.tracker = tracker or BeatTracker()
        self.history = history or TapHistory()
        self.detector.on_tap(self._record)

    @classmethod
    def from_settings(cls, config: Settings | None = None, sample_rate: int | None = None) -> "TapSession":
        config = config or default_settings
        detector = OnsetDetector(
            sample_rate=sample_rate or config.sample_rate,
            fft_size=config.fft_size,
            min_inter_tap_interval_ms=config.min_inter_tap_interval_ms,
            base_threshold=config.base_threshold,
            threshold_margin=config.threshold_margin,
            noise_floor_decay=config.noise_floor_decay,
            min_threshold=config.min_threshold,
            calibration_floor=config.calibration_floor,
        )
        tracker = BeatTracker(
            tolerance_ms=config.tolerance_ms,
            perfect_window_ms=config.perfect_window_ms,
        )
        return cls(detector, tracker, TapHistory(config.tap_history_length))

    def _record(self, tap: TapEvent) -> None:
        self.history.append(tap)
        self.tracker.add_detected_beat(tap)

    def process_frame(self, frame: Frame) -> TapEvent | None:
        return self.detector.process_frame(frame)

    def process_frames(self, frames: Iterable[Frame]) -> list[TapEvent]:
        taps = []
        for frame in frames:
            tap = self.detector.process_frame(frame)
            if tap is not None:
                taps.append(tap)
        return taps

    def add_manual_tap(self, timestamp: float, drum_type: DrumType = DrumType.SNARE) -> TapEvent:
        """Record a pad tap that bypasses audio detection."""
        tap = manual_tap(timestamp, drum_type, self.detector.bands)
        self._record(tap)
        return tap

    def set_expected_beats(self, beats: Iterable[float]) -> None:
        self.tracker.set_expected_beats(beats)

    def start_metronome(self, bpm: float, start_ms: float, count: int = 32) -> list[float]:
        """Arm the tracker with a metronome grid; returns the grid."""
        beats = expected_beat_grid(bpm, start_ms, count)
        self.tracker.set_expected_beats(beats)
        logger.info(f"Metronome grid armed: {count} beats at {bpm:.1f} BPM from {start_ms:.0f}ms")
        return beats

    def analysis(self) -> list[BeatAnalysis]:
        return self.tracker.analyze_beat_accuracy()

    def timing_stats(self) -> TimingStats:
        return self.tracker.get_timing_stats()

    def clear(self) -> None:
        """End of session: drop grid, recorded taps and history."""
        self.tracker.clear()
        self.history.clear()
