"""Pydantic response models for API."""

import math

from pydantic import BaseModel

from tapmeter.analysis.models import BeatAnalysis, ScoreResult, TapEvent, TimingStats


class TapResponse(BaseModel):
    timestamp: float
    intensity: float
    frequency: float
    confidence: float
    type: str


class BeatAnalysisResponse(BaseModel):
    expected_time: float
    actual_time: float | None = None
    error: float | None = None  # None when missed with no taps at all
    accuracy: str  # "perfect" | "early" | "late" | "missed"
    intensity: float = 0.0


class TimingStatsResponse(BaseModel):
    average_error: float
    standard_deviation: float
    accuracy_percentage: float
    consistency_score: float


class ScoreResponse(BaseModel):
    taps: list[TapResponse]
    beats: list[BeatAnalysisResponse]
    stats: TimingStatsResponse
    duration: float = 0.0
    threshold: float = 0.0


def tap_to_response(tap: TapEvent) -> TapResponse:
    return TapResponse(
        timestamp=tap.timestamp,
        intensity=tap.intensity,
        frequency=tap.frequency,
        confidence=tap.confidence,
        type=tap.type.value,
    )


def beat_to_response(beat: BeatAnalysis) -> BeatAnalysisResponse:
    return BeatAnalysisResponse(
        expected_time=beat.expected_time,
        actual_time=beat.actual_time,
        error=beat.error if math.isfinite(beat.error) else None,
        accuracy=beat.accuracy.value,
        intensity=beat.intensity,
    )


def stats_to_response(stats: TimingStats) -> TimingStatsResponse:
    return TimingStatsResponse(
        average_error=stats.average_error,
        standard_deviation=stats.standard_deviation,
        accuracy_percentage=stats.accuracy_percentage,
        consistency_score=stats.consistency_score,
    )


def result_to_response(result: ScoreResult) -> ScoreResponse:
    return ScoreResponse(
        taps=[tap_to_response(t) for t in result.taps],
        beats=[beat_to_response(b) for b in result.beats],
        stats=stats_to_response(result.stats),
        duration=result.duration,
        threshold=result.threshold,
    )


# WebSocket message types

class TapMessage(BaseModel):
    type: str = "tap"
    tap: TapResponse


class StatsMessage(BaseModel):
    type: str = "stats"
    stats: TimingStatsResponse
    beats: list[BeatAnalysisResponse] = []


class CalibrationMessage(BaseModel):
    type: str = "calibration_complete"
    threshold: float
