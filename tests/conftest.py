"""Shared test fixtures for tap detection tests."""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from tapmeter.analysis.models import Frame
from tapmeter.main import app

SR = 44100
FFT_SIZE = 2048


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


def make_frame(
    timestamp: float,
    level: float = 0.0,
    magnitudes: np.ndarray | None = None,
    fft_size: int = FFT_SIZE,
) -> Frame:
    """Frame with a flat spectrum at ``level`` unless magnitudes are given."""
    if magnitudes is None:
        magnitudes = np.full(fft_size // 2, level, dtype=np.float64)
    return Frame(
        timestamp=float(timestamp),
        time_domain=np.zeros(fft_size, dtype=np.float32),
        magnitudes=np.asarray(magnitudes, dtype=np.float64),
    )


def band_magnitudes(
    low_hz: float,
    high_hz: float,
    level: float,
    sr: int = SR,
    fft_size: int = FFT_SIZE,
) -> np.ndarray:
    """Spectrum with ``level`` in bins whose centre lies in [low_hz, high_hz)."""
    freqs = np.arange(fft_size // 2) * sr / fft_size
    magnitudes = np.zeros(fft_size // 2, dtype=np.float64)
    magnitudes[(freqs >= low_hz) & (freqs < high_hz)] = level
    return magnitudes


def generate_click_track(
    bpm: float,
    n_beats: int,
    offset_seconds: float = 0.25,
    duration_seconds: float | None = None,
    sr: int = 22050,
    accent_every: int = 4,
    accent_ratio: float = 2.0,
) -> np.ndarray:
    """Generate a synthetic click track standing in for a drummer's hits.

    Clicks start at ``offset_seconds`` and repeat every beat; every
    ``accent_every``-th click is louder. Returns mono audio.
    """
    beat_interval = 60.0 / bpm
    if duration_seconds is None:
        duration_seconds = offset_seconds + n_beats * beat_interval
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    click_duration = 0.02  # 20ms click
    click_samples = int(click_duration * sr)

    # Create click sound (short sine burst with envelope)
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * 1000 * t_click) * np.exp(-t_click * 100)

    for beat in range(n_beats):
        sample_pos = int((offset_seconds + beat * beat_interval) * sr)
        amplitude = accent_ratio if beat % accent_every == 0 else 1.0
        end = min(sample_pos + click_samples, n_samples)
        length = end - sample_pos
        if length > 0:
            audio[sample_pos:end] += click[:length] * amplitude

    # Normalize
    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak

    return audio


@pytest.fixture
def click_120():
    """Eight clicks at 120 BPM starting at 250ms, 22050 Hz."""
    return generate_click_track(bpm=120, n_beats=8)
