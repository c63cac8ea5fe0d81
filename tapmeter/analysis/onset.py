"""Real-time spectral-flux onset detection and drum-type classification."""

from __future__ import annotations

import logging
import math
import numbers
from typing import Callable, Sequence

import librosa
import numpy as np

from tapmeter.analysis.calibration import Calibration, CalibrationState
from tapmeter.analysis.models import Classification, DrumType, Frame, FrequencyBand, TapEvent

logger = logging.getLogger(__name__)

DEFAULT_BANDS: tuple[FrequencyBand, ...] = (
    FrequencyBand(DrumType.KICK, 0.0, 200.0, 60.0),
    FrequencyBand(DrumType.SNARE, 200.0, 2000.0, 200.0),
    FrequencyBand(DrumType.HIHAT, 2000.0, 8000.0, 8000.0),
    FrequencyBand(DrumType.CRASH, 8000.0, 16000.0, 12000.0),
)
GENERAL_FREQUENCY = 1000.0

_MIN_FFT_SIZE = 256

TapCallback = Callable[[TapEvent], None]
CalibrationCallback = Callable[[float], None]


def band_bin_ranges(
    sample_rate: int,
    fft_size: int,
    bands: Sequence[FrequencyBand] = DEFAULT_BANDS,
) -> list[tuple[int, int]]:
    """Map each band's [min_hz, max_hz) onto a [start, stop) bin range.

    Only the first ``fft_size // 2`` bins are considered; bands above
    Nyquist collapse to an empty range.
    """
    n_bins = fft_size // 2
    freqs = librosa.fft_frequencies(sr=sample_rate, n_fft=fft_size)[:n_bins]
    ranges = []
    for band in bands:
        start = int(np.searchsorted(freqs, band.min_hz, side="left"))
        stop = int(np.searchsorted(freqs, band.max_hz, side="left"))
        ranges.append((start, max(start, stop)))
    return ranges


def band_energies(magnitudes: np.ndarray, ranges: Sequence[tuple[int, int]]) -> np.ndarray:
    """Mean magnitude per band (0 for empty bands)."""
    energies = np.zeros(len(ranges), dtype=np.float64)
    for i, (start, stop) in enumerate(ranges):
        if stop > start:
            energies[i] = float(magnitudes[start:stop].mean())
    return energies


def classify(
    energies: Sequence[float],
    bands: Sequence[FrequencyBand] = DEFAULT_BANDS,
) -> Classification:
    """Classify a tap from its per-band energies.

    The band holding the most energy wins. A tie for the maximum is reported
    as ``general``, as is a frame with no band energy at all. Confidence is
    the winning band's share of the total band energy.
    """
    values = np.asarray(energies, dtype=np.float64)
    total = float(values.sum()) if len(values) else 0.0
    if total <= 0.0:
        return Classification(DrumType.GENERAL, GENERAL_FREQUENCY, 0.0)

    peak = float(values.max())
    confidence = peak / total
    winners = np.flatnonzero(values == peak)
    if len(winners) != 1:
        return Classification(DrumType.GENERAL, GENERAL_FREQUENCY, confidence)

    band = bands[int(winners[0])]
    return Classification(band.drum_type, band.frequency, confidence)


def manual_tap(
    timestamp: float,
    drum_type: DrumType = DrumType.SNARE,
    bands: Sequence[FrequencyBand] = DEFAULT_BANDS,
) -> TapEvent:
    """Build a tap entered by hand (e.g. a pad press): full intensity and confidence."""
    drum_type = DrumType(drum_type)
    frequency = GENERAL_FREQUENCY
    for band in bands:
        if band.drum_type == drum_type:
            frequency = band.frequency
            break
    return TapEvent(
        timestamp=float(timestamp),
        intensity=100.0,
        frequency=frequency,
        confidence=1.0,
        type=drum_type,
    )


class OnsetDetector:
    """Adaptive-threshold spectral-flux onset detector.

    Driven by a single analysis loop: call :meth:`process_frame` once per hop
    with frames in non-decreasing timestamp order. Accepted onsets are
    classified by frequency band and delivered to every ``on_tap`` listener
    before being returned.

    Parameters
    ----------
    sample_rate:
        Sample rate of the analysed signal, used to map bins to Hz.
    fft_size:
        Transform size; frames carry ``fft_size`` samples and
        ``fft_size // 2`` magnitudes.
    min_inter_tap_interval_ms:
        Refractory period after an accepted onset.
    base_threshold:
        Lowest flux sum that counts as an onset before noise adaptation.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        fft_size: int = 2048,
        min_inter_tap_interval_ms: float = 50.0,
        base_threshold: float = 30.0,
        threshold_margin: float = 20.0,
        noise_floor_decay: float = 0.99,
        min_threshold: float = 1.0,
        calibration_floor: float = 30.0,
        bands: Sequence[FrequencyBand] = DEFAULT_BANDS,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")
        if min_threshold <= 0:
            raise ValueError(f"Minimum threshold must be positive, got {min_threshold}")
        self.sample_rate = sample_rate
        self.threshold_margin = threshold_margin
        self.noise_floor_decay = noise_floor_decay
        self.min_threshold = min_threshold
        self.calibration_floor = calibration_floor
        self.bands = tuple(bands)

        self._tap_listeners: list[TapCallback] = []
        self._calibration_listeners: list[CalibrationCallback] = []

        self.configure(fft_size, min_inter_tap_interval_ms, base_threshold)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def configure(
        self,
        fft_size: int,
        min_inter_tap_interval_ms: float = 50.0,
        base_threshold: float = 30.0,
    ) -> None:
        """(Re)size the analysis buffers and reset all detector state."""
        if fft_size < _MIN_FFT_SIZE or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= {_MIN_FFT_SIZE}, got {fft_size}")
        if min_inter_tap_interval_ms <= 0:
            raise ValueError(
                f"min_inter_tap_interval_ms must be positive, got {min_inter_tap_interval_ms}"
            )
        if base_threshold < self.min_threshold:
            raise ValueError(
                f"base_threshold must be >= {self.min_threshold}, got {base_threshold}"
            )

        self.fft_size = fft_size
        self.n_bins = fft_size // 2
        self.min_inter_tap_interval_ms = float(min_inter_tap_interval_ms)
        self._base_threshold = float(base_threshold)
        self._band_ranges = band_bin_ranges(self.sample_rate, fft_size, self.bands)

        self._previous = np.zeros(self.n_bins, dtype=np.float64)
        self._flux = np.zeros(self.n_bins, dtype=np.float64)
        self.reset()

    def reset(self) -> None:
        """Restart detection: forget noise floor, history and any calibration.

        The base threshold (configured, calibrated or sensitivity-adjusted)
        is kept.
        """
        self._previous.fill(0.0)
        self._flux.fill(0.0)
        self._noise_floor = 0.0
        self._threshold = self._base_threshold
        self._last_onset_time: float | None = None
        self._last_frame_time: float | None = None
        self._calibration: Calibration | None = None

    def on_tap(self, callback: TapCallback) -> None:
        """Register a listener called synchronously for every accepted tap."""
        self._tap_listeners.append(callback)

    def on_calibration_complete(self, callback: CalibrationCallback) -> None:
        self._calibration_listeners.append(callback)

    def remove_listener(self, callback) -> None:
        if callback in self._tap_listeners:
            self._tap_listeners.remove(callback)
        if callback in self._calibration_listeners:
            self._calibration_listeners.remove(callback)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def threshold(self) -> float:
        """Current adaptive threshold."""
        return self._threshold

    @property
    def base_threshold(self) -> float:
        return self._base_threshold

    @property
    def noise_floor(self) -> float:
        return self._noise_floor

    @property
    def last_onset_time(self) -> float | None:
        return self._last_onset_time

    @property
    def state(self) -> CalibrationState:
        if self._calibration is not None:
            return CalibrationState.CALIBRATING
        return CalibrationState.IDLE

    @property
    def is_calibrating(self) -> bool:
        return self._calibration is not None

    # ------------------------------------------------------------------
    # Per-frame analysis
    # ------------------------------------------------------------------

    def process_frame(self, frame: Frame | None) -> TapEvent | None:
        """Analyse one frame; return the accepted tap, if any.

        Malformed frames are dropped without touching detector state.
        """
        magnitudes = self._validated_magnitudes(frame)
        if magnitudes is None:
            return None
        now = float(frame.timestamp)

        # Spectral flux: only energy increases count
        np.subtract(magnitudes, self._previous, out=self._flux)
        np.maximum(self._flux, 0.0, out=self._flux)
        flux_sum = float(self._flux.sum())

        self._update_noise_floor(float(magnitudes.mean()))
        np.copyto(self._previous, magnitudes)
        self._last_frame_time = now

        if self._calibration is not None:
            if self._calibration.add_sample(now, flux_sum):
                self.finish_calibration()
            return None

        if flux_sum <= self._threshold:
            return None
        if (self._last_onset_time is not None
                and now - self._last_onset_time <= self.min_inter_tap_interval_ms):
            return None

        tap = self._build_tap(now, flux_sum, magnitudes)
        self._last_onset_time = now
        self._emit(tap)
        return tap

    def _validated_magnitudes(self, frame: Frame | None) -> np.ndarray | None:
        if frame is None or frame.magnitudes is None or frame.time_domain is None:
            return None
        timestamp = frame.timestamp
        if not isinstance(timestamp, numbers.Real) or not math.isfinite(timestamp):
            logger.debug(f"Dropping frame: invalid timestamp {timestamp!r}")
            return None

        try:
            magnitudes = np.asarray(frame.magnitudes, dtype=np.float64)
            n_samples = np.size(frame.time_domain)
        except (TypeError, ValueError) as e:
            logger.debug(f"Dropping frame: unreadable arrays ({e})")
            return None
        if magnitudes.ndim != 1 or magnitudes.size != self.n_bins:
            logger.debug(f"Dropping frame: expected {self.n_bins} bins, got {magnitudes.shape}")
            return None
        if n_samples != self.fft_size:
            logger.debug(f"Dropping frame: expected {self.fft_size} samples, got {n_samples}")
            return None
        if not np.all(np.isfinite(magnitudes)) or np.any(magnitudes < 0):
            logger.debug("Dropping frame: non-finite or negative magnitudes")
            return None
        if self._last_frame_time is not None and timestamp < self._last_frame_time:
            logger.debug(
                f"Dropping out-of-order frame at {timestamp:.1f}ms "
                f"(last {self._last_frame_time:.1f}ms)"
            )
            return None
        return magnitudes

    def _update_noise_floor(self, energy: float) -> None:
        decay = self.noise_floor_decay
        self._noise_floor = self._noise_floor * decay + energy * (1.0 - decay)
        self._threshold = max(self._base_threshold, self._noise_floor + self.threshold_margin)

    def _build_tap(self, timestamp: float, flux_sum: float, magnitudes: np.ndarray) -> TapEvent:
        result = classify(band_energies(magnitudes, self._band_ranges), self.bands)
        return TapEvent(
            timestamp=timestamp,
            intensity=min(100.0, flux_sum / self._threshold * 100.0),
            frequency=result.frequency,
            confidence=result.confidence,
            type=result.type,
        )

    def _emit(self, tap: TapEvent) -> None:
        for callback in list(self._tap_listeners):
            try:
                callback(tap)
            except Exception as e:
                logger.warning(f"Tap listener failed: {e}")

    # ------------------------------------------------------------------
    # Calibration and sensitivity
    # ------------------------------------------------------------------

    def start_calibration(self, duration_ms: float = 5000.0) -> None:
        """Collect flux sums for ``duration_ms`` of frames instead of emitting taps."""
        previous = self._base_threshold
        if self._calibration is not None:
            previous = self._calibration.previous_threshold
        self._calibration = Calibration(duration_ms, self.calibration_floor, previous)
        logger.info(f"Calibration started ({duration_ms:.0f}ms)")

    def finish_calibration(self) -> float | None:
        """Complete the running calibration now; return the derived threshold.

        Returns ``None`` (threshold unchanged) when not calibrating or when no
        frames were collected.
        """
        calibration = self._calibration
        if calibration is None:
            return None
        self._calibration = None

        threshold = calibration.result()
        if threshold is None:
            logger.info("Calibration finished without samples; threshold unchanged")
            return None

        self._base_threshold = max(self.min_threshold, threshold)
        self._threshold = self._base_threshold
        logger.info(
            f"Calibration finished: {len(calibration.samples)} samples, "
            f"threshold {self._base_threshold:.2f}"
        )
        for callback in list(self._calibration_listeners):
            try:
                callback(self._base_threshold)
            except Exception as e:
                logger.warning(f"Calibration listener failed: {e}")
        return self._base_threshold

    def cancel_calibration(self) -> None:
        """Abort calibration and restore the threshold in effect before it began."""
        calibration = self._calibration
        if calibration is None:
            return
        self._calibration = None
        self._base_threshold = calibration.previous_threshold
        self._threshold = max(self._base_threshold, self._noise_floor + self.threshold_margin)
        logger.info("Calibration cancelled")

    def adjust_sensitivity(self, factor: float) -> None:
        """Scale thresholds by ``1 / factor`` (factor > 1 is more sensitive)."""
        if not factor > 0:
            raise ValueError(f"Sensitivity factor must be positive, got {factor}")
        self._base_threshold = max(self.min_threshold, self._base_threshold / factor)
        self._threshold = max(self._base_threshold, self._threshold / factor)
