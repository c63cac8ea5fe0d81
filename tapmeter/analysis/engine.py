"""Offline scoring - runs a whole recording through a tap session."""

import logging

import numpy as np

from tapmeter.analysis.beat_tracking import expected_beat_grid
from tapmeter.analysis.models import ScoreResult
from tapmeter.analysis.session import TapSession
from tapmeter.audio.frames import FrameSource
from tapmeter.audio.loader import load_audio
from tapmeter.audio.preprocessing import preprocess
from tapmeter.config import Settings, settings

logger = logging.getLogger(__name__)


class ScoringEngine:
    """Scores a practice recording against a metronome grid."""

    def __init__(self, config: Settings | None = None):
        self.config = config or settings

    def analyze_file(
        self,
        file_path: str,
        bpm: float,
        beat_count: int | None = None,
        offset_ms: float = 0.0,
        tolerance_ms: float | None = None,
    ) -> ScoreResult:
        """Load, preprocess and score an audio file."""
        audio, sr = load_audio(
            file_path, sr=self.config.sample_rate, min_samples=self.config.fft_size,
        )
        audio = preprocess(audio, sr)
        expected = expected_beat_grid(
            bpm,
            offset_ms,
            self.config.default_beat_count if beat_count is None else beat_count,
        )
        return self.analyze_audio(audio, sr, expected, tolerance_ms=tolerance_ms)

    def analyze_audio(
        self,
        audio: np.ndarray,
        sr: int,
        expected_beats: list[float],
        tolerance_ms: float | None = None,
    ) -> ScoreResult:
        """Score pre-loaded audio against explicit expected beat times (ms)."""
        duration = len(audio) / sr
        logger.info(f"Scoring {duration:.1f}s of audio at {sr}Hz against {len(expected_beats)} beats")

        session = TapSession.from_settings(self.config, sample_rate=sr)
        if tolerance_ms is not None:
            session.tracker.set_tolerance(tolerance_ms)
        session.set_expected_beats(expected_beats)

        source = FrameSource(
            sr=sr,
            fft_size=self.config.fft_size,
            hop_length=self.config.hop_length,
            smoothing=self.config.smoothing_time_constant,
            min_db=self.config.min_db,
            max_db=self.config.max_db,
        )
        taps = session.process_frames(source.frames(audio))
        logger.info(f"  Detected {len(taps)} taps (threshold {session.detector.threshold:.1f})")

        stats = session.timing_stats()
        logger.info(
            f"  Accuracy {stats.accuracy_percentage:.1f}%, "
            f"mean error {stats.average_error:.1f}ms, consistency {stats.consistency_score:.1f}"
        )
        return ScoreResult(
            taps=taps,
            beats=session.analysis(),
            stats=stats,
            duration=duration,
            threshold=session.detector.threshold,
            expected_beats=list(expected_beats),
        )
