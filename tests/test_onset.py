"""Tests for spectral-flux onset detection and classification."""

import numpy as np
import pytest

from tapmeter.analysis.models import DrumType, Frame, FrequencyBand
from tapmeter.analysis.onset import (
    DEFAULT_BANDS,
    OnsetDetector,
    band_bin_ranges,
    band_energies,
    classify,
    manual_tap,
)
from tests.conftest import FFT_SIZE, SR, band_magnitudes, make_frame


def _detector(**kwargs) -> OnsetDetector:
    return OnsetDetector(sample_rate=SR, fft_size=FFT_SIZE, **kwargs)


def test_silence_produces_no_taps():
    detector = _detector()
    taps = [detector.process_frame(make_frame(t * 10)) for t in range(50)]
    assert all(tap is None for tap in taps)
    assert detector.threshold == 30.0


def test_energy_rise_produces_tap():
    detector = _detector()
    assert detector.process_frame(make_frame(0)) is None

    tap = detector.process_frame(make_frame(10, level=10.0))

    assert tap is not None
    assert tap.timestamp == 10.0
    assert tap.intensity == 100.0
    assert detector.last_onset_time == 10.0


def test_decaying_energy_is_not_an_onset():
    detector = _detector()
    detector.process_frame(make_frame(0, level=50.0))
    assert detector.process_frame(make_frame(100, level=20.0)) is None
    assert detector.process_frame(make_frame(200, level=5.0)) is None


def test_kick_band_energy_classified_as_kick():
    detector = _detector()
    detector.process_frame(make_frame(0))

    tap = detector.process_frame(make_frame(20, magnitudes=band_magnitudes(0, 200, 100.0)))

    assert tap is not None
    assert tap.type == DrumType.KICK
    assert tap.confidence == 1.0
    assert tap.frequency == 60.0


def test_hihat_band_energy_classified_as_hihat():
    detector = _detector()
    detector.process_frame(make_frame(0))

    tap = detector.process_frame(make_frame(20, magnitudes=band_magnitudes(2000, 8000, 80.0)))

    assert tap is not None
    assert tap.type == DrumType.HIHAT
    assert tap.frequency == 8000.0


def test_refractory_period_suppresses_double_triggers():
    detector = _detector(min_inter_tap_interval_ms=50.0)
    taps = []
    for k in range(100):
        level = 50.0 if k % 2 else 0.0
        tap = detector.process_frame(make_frame(k * 10, level=level))
        if tap is not None:
            taps.append(tap)

    assert len(taps) > 1
    gaps = np.diff([t.timestamp for t in taps])
    assert np.all(gaps > 50.0)


def test_tap_exactly_at_refractory_boundary_is_suppressed():
    detector = _detector(min_inter_tap_interval_ms=50.0)
    detector.process_frame(make_frame(0))
    assert detector.process_frame(make_frame(10, level=10.0)) is not None
    detector.process_frame(make_frame(30))
    assert detector.process_frame(make_frame(60, level=10.0)) is None
    detector.process_frame(make_frame(61))
    assert detector.process_frame(make_frame(62, level=10.0)) is not None


def test_threshold_never_below_base():
    detector = _detector(base_threshold=30.0)
    for k, level in enumerate([0.0, 1.0, 5.0, 0.0, 2.0] * 40):
        detector.process_frame(make_frame(k * 10, level=level))
        assert detector.threshold >= detector.base_threshold


def test_threshold_follows_noise_floor():
    detector = _detector(base_threshold=30.0)
    for k in range(500):
        detector.process_frame(make_frame(k * 10, level=100.0))

    # noise floor approaches the mean level with a ~100-frame time constant
    assert detector.noise_floor == pytest.approx(100.0 * (1 - 0.99 ** 500))
    assert detector.threshold == pytest.approx(detector.noise_floor + 20.0)
    assert detector.threshold > 110.0


def test_listeners_receive_taps_in_order():
    detector = _detector()
    received = []
    detector.on_tap(lambda tap: received.append(("first", tap)))
    detector.on_tap(lambda tap: received.append(("second", tap)))

    detector.process_frame(make_frame(0))
    tap = detector.process_frame(make_frame(10, level=10.0))

    assert received == [("first", tap), ("second", tap)]


def test_failing_listener_does_not_stop_detection():
    detector = _detector()
    received = []

    def broken(tap):
        raise RuntimeError("listener bug")

    detector.on_tap(broken)
    detector.on_tap(received.append)

    detector.process_frame(make_frame(0))
    tap = detector.process_frame(make_frame(10, level=10.0))

    assert tap is not None
    assert received == [tap]


def test_removed_listener_is_not_called():
    detector = _detector()
    received = []
    detector.on_tap(received.append)
    detector.remove_listener(received.append)

    detector.process_frame(make_frame(0))
    detector.process_frame(make_frame(10, level=10.0))

    assert received == []


@pytest.mark.parametrize("frame", [
    None,
    Frame(timestamp=10.0, time_domain=np.zeros(FFT_SIZE), magnitudes=np.zeros(0)),
    Frame(timestamp=10.0, time_domain=np.zeros(0), magnitudes=np.full(FFT_SIZE // 2, 10.0)),
    Frame(timestamp=10.0, time_domain=np.zeros(FFT_SIZE), magnitudes=np.full(100, 10.0)),
    Frame(timestamp=10.0, time_domain=np.zeros(FFT_SIZE), magnitudes=np.full(FFT_SIZE // 2, np.nan)),
    Frame(timestamp=10.0, time_domain=np.zeros(FFT_SIZE), magnitudes=np.full(FFT_SIZE // 2, -10.0)),
    Frame(timestamp=10.0, time_domain=None, magnitudes=np.full(FFT_SIZE // 2, 10.0)),
    Frame(timestamp=None, time_domain=np.zeros(FFT_SIZE), magnitudes=np.full(FFT_SIZE // 2, 10.0)),
    Frame(timestamp=float("nan"), time_domain=np.zeros(FFT_SIZE), magnitudes=np.full(FFT_SIZE // 2, 10.0)),
    Frame(timestamp=float("inf"), time_domain=np.zeros(FFT_SIZE), magnitudes=np.full(FFT_SIZE // 2, 10.0)),
    Frame(timestamp="10", time_domain=np.zeros(FFT_SIZE), magnitudes=np.full(FFT_SIZE // 2, 10.0)),
    Frame(timestamp=10.0, time_domain=np.zeros(FFT_SIZE), magnitudes=[[1.0], [1.0, 2.0]]),
    Frame(timestamp=10.0, time_domain=[[0.0], [0.0, 0.0]], magnitudes=np.full(FFT_SIZE // 2, 10.0)),
])
def test_malformed_frames_are_no_ops(frame):
    detector = _detector()
    detector.process_frame(make_frame(0, level=1.0))
    noise_floor = detector.noise_floor

    assert detector.process_frame(frame) is None
    assert detector.noise_floor == noise_floor

    # Previous magnitudes were not overwritten by the dropped frame
    assert detector.process_frame(make_frame(20, level=1.0)) is None


def test_nan_timestamp_does_not_break_refractory_gate():
    detector = _detector(min_inter_tap_interval_ms=50.0)
    detector.process_frame(make_frame(0))
    assert detector.process_frame(make_frame(10, level=10.0)) is not None

    nan_frame = Frame(
        timestamp=float("nan"),
        time_domain=np.zeros(FFT_SIZE),
        magnitudes=np.full(FFT_SIZE // 2, 50.0),
    )
    assert detector.process_frame(nan_frame) is None
    assert detector.last_onset_time == 10.0

    detector.process_frame(make_frame(20))
    assert detector.process_frame(make_frame(30, level=50.0)) is None
    # Out-of-order detection still compares against the last real frame
    assert detector.process_frame(make_frame(5, level=50.0)) is None


def test_out_of_order_frame_is_dropped():
    detector = _detector()
    detector.process_frame(make_frame(100))
    assert detector.process_frame(make_frame(50, level=10.0)) is None
    assert detector.process_frame(make_frame(110, level=10.0)) is not None


@pytest.mark.parametrize("kwargs", [
    {"fft_size": 1000},
    {"fft_size": 128},
    {"min_inter_tap_interval_ms": 0},
    {"base_threshold": 0.0},
])
def test_configure_rejects_invalid_values(kwargs):
    params = {"fft_size": 2048, "min_inter_tap_interval_ms": 50.0, "base_threshold": 30.0}
    params.update(kwargs)
    detector = _detector()
    with pytest.raises(ValueError):
        detector.configure(**params)


def test_configure_resizes_buffers():
    detector = _detector()
    detector.configure(1024, 40.0, 25.0)

    assert detector.n_bins == 512
    assert detector.base_threshold == 25.0
    detector.process_frame(make_frame(0, fft_size=1024))
    assert detector.process_frame(make_frame(10, level=10.0, fft_size=1024)) is not None
    # Frames sized for the old configuration are now malformed
    assert detector.process_frame(make_frame(100, level=50.0)) is None


def test_adjust_sensitivity_scales_threshold():
    detector = _detector(base_threshold=30.0)
    detector.adjust_sensitivity(2.0)
    assert detector.base_threshold == 15.0
    assert detector.threshold == 15.0

    detector.adjust_sensitivity(0.5)
    assert detector.base_threshold == 30.0


def test_adjust_sensitivity_clamps_to_minimum():
    detector = _detector(base_threshold=30.0, min_threshold=1.0)
    detector.adjust_sensitivity(1000.0)
    assert detector.base_threshold == 1.0
    assert detector.threshold >= 1.0


@pytest.mark.parametrize("factor", [0.0, -2.0, float("nan")])
def test_adjust_sensitivity_rejects_invalid_factor(factor):
    detector = _detector(base_threshold=30.0)
    with pytest.raises(ValueError):
        detector.adjust_sensitivity(factor)
    assert detector.base_threshold == 30.0


def test_higher_sensitivity_detects_quieter_hits():
    quiet = band_magnitudes(200, 330, 4.0)  # six bins: flux 24, between 20 and 30
    normal = _detector()
    sensitive = _detector()
    sensitive.adjust_sensitivity(2.0)

    for detector in (normal, sensitive):
        detector.process_frame(make_frame(0))

    assert normal.process_frame(make_frame(10, magnitudes=quiet)) is None
    assert sensitive.process_frame(make_frame(10, magnitudes=quiet)) is not None


def test_reset_forgets_state_but_keeps_threshold():
    detector = _detector()
    detector.adjust_sensitivity(2.0)
    for k in range(20):
        detector.process_frame(make_frame(k * 10, level=float(k % 2) * 10.0))

    detector.reset()

    assert detector.noise_floor == 0.0
    assert detector.last_onset_time is None
    assert detector.base_threshold == 15.0
    # Earlier timestamps are accepted again after a restart
    assert detector.process_frame(make_frame(0, level=10.0)) is not None


# ------------------------------------------------------------------
# Classification
# ------------------------------------------------------------------


def test_classify_highest_band_wins():
    result = classify([1.0, 2.0, 3.0, 4.0])
    assert result.type == DrumType.CRASH
    assert result.frequency == 12000.0
    assert result.confidence == pytest.approx(0.4)


def test_classify_is_deterministic():
    energies = [12.5, 40.0, 7.25, 3.0]
    results = {classify(energies) for _ in range(10)}
    assert len(results) == 1
    assert results.pop().type == DrumType.SNARE


def test_classify_zero_energy_is_general_with_zero_confidence():
    result = classify([0.0, 0.0, 0.0, 0.0])
    assert result.type == DrumType.GENERAL
    assert result.confidence == 0.0


def test_classify_tie_is_general():
    result = classify([5.0, 5.0, 1.0, 0.0])
    assert result.type == DrumType.GENERAL
    assert result.frequency == 1000.0
    assert result.confidence == pytest.approx(5.0 / 11.0)


def test_custom_band_table():
    bands = (
        FrequencyBand(DrumType.KICK, 0.0, 100.0, 50.0),
        FrequencyBand(DrumType.SNARE, 100.0, 5000.0, 250.0),
    )
    assert classify([1.0, 3.0], bands).frequency == 250.0

    ranges = band_bin_ranges(SR, FFT_SIZE, bands)
    assert ranges[0][0] == 0
    assert ranges[0][1] == ranges[1][0]


def test_band_ranges_above_nyquist_are_empty():
    ranges = band_bin_ranges(16000, 1024)
    crash_start, crash_stop = ranges[3]
    assert crash_start == crash_stop == 512

    energies = band_energies(np.full(512, 10.0), ranges)
    assert energies[3] == 0.0
    assert classify(energies).type != DrumType.CRASH


def test_band_energies_are_band_means():
    magnitudes = band_magnitudes(0, 200, 100.0)
    energies = band_energies(magnitudes, band_bin_ranges(SR, FFT_SIZE))
    assert energies[0] == pytest.approx(100.0)
    assert np.all(energies[1:] == 0.0)


def test_manual_tap_uses_band_frequency():
    tap = manual_tap(1234.0, DrumType.KICK)
    assert tap.type == DrumType.KICK
    assert tap.frequency == 60.0
    assert tap.intensity == 100.0
    assert tap.confidence == 1.0

    assert manual_tap(0.0, "general", DEFAULT_BANDS).frequency == 1000.0
