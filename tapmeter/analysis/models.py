"""Core data models for tap detection and timing analysis."""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class DrumType(str, Enum):
    """Coarse drum family a tap is classified as."""
    KICK = "kick"
    SNARE = "snare"
    HIHAT = "hihat"
    CRASH = "crash"
    GENERAL = "general"


class BeatAccuracy(str, Enum):
    PERFECT = "perfect"
    EARLY = "early"
    LATE = "late"
    MISSED = "missed"


@dataclass(frozen=True)
class Frame:
    """One analysis hop handed over by the frame source.

    ``time_domain`` holds ``fft_size`` samples and ``magnitudes`` holds
    ``fft_size // 2`` non-negative bin magnitudes.
    """
    timestamp: float  # ms, monotonic
    time_domain: np.ndarray
    magnitudes: np.ndarray


@dataclass(frozen=True)
class TapEvent:
    """A single detected (or manually entered) tap."""
    timestamp: float  # ms
    intensity: float  # 0-100, relative to the threshold at detection time
    frequency: float  # Hz, representative of the drum type
    confidence: float  # 0.0-1.0
    type: DrumType = DrumType.GENERAL


@dataclass(frozen=True)
class FrequencyBand:
    """A row of the classification table."""
    drum_type: DrumType
    min_hz: float
    max_hz: float
    frequency: float  # representative frequency reported on the tap


@dataclass(frozen=True)
class Classification:
    type: DrumType
    frequency: float
    confidence: float


@dataclass
class BeatAnalysis:
    """How one expected beat was (or was not) hit."""
    expected_time: float  # ms
    actual_time: float | None
    error: float  # signed ms for hits, distance to nearest tap for misses
    accuracy: BeatAccuracy
    intensity: float = 0.0


@dataclass
class TimingStats:
    """Aggregate timing statistics over the non-missed beats."""
    average_error: float = 0.0
    standard_deviation: float = 0.0
    accuracy_percentage: float = 0.0
    consistency_score: float = 0.0


@dataclass
class ScoreResult:
    """Complete offline scoring result."""
    taps: list[TapEvent]
    beats: list[BeatAnalysis]
    stats: TimingStats
    duration: float = 0.0  # seconds
    threshold: float = 0.0
    expected_beats: list[float] = field(default_factory=list)
