"""Audio preprocessing utilities."""

from __future__ import annotations

import numpy as np
from scipy.signal import butter, sosfilt


def normalize(audio: np.ndarray) -> np.ndarray:
    """Peak-normalize audio to the range [-1, 1].

    If the audio is silent (all zeros), it is returned unchanged.
    """
    peak = np.max(np.abs(audio)) if len(audio) else 0.0
    if peak == 0:
        return audio
    return audio / peak


def low_cut_filter(
    audio: np.ndarray,
    sr: int,
    cutoff: float = 20.0,
) -> np.ndarray:
    """Remove DC offset and sub-audio rumble with a Butterworth high-pass.

    The cutoff stays well below the kick band so bass drum energy survives.

    Parameters
    ----------
    audio:
        Input audio signal.
    sr:
        Sample rate in Hz.
    cutoff:
        High-pass cutoff frequency in Hz. Defaults to 20 Hz.
    """
    if len(audio) == 0:
        return audio
    sos = butter(N=2, Wn=cutoff, btype="high", fs=sr, output="sos")
    return sosfilt(sos, audio).astype(np.float32)


def preprocess(audio: np.ndarray, sr: int) -> np.ndarray:
    """Apply the full preprocessing pipeline (normalize then low-cut filter)."""
    audio = normalize(audio)
    audio = low_cut_filter(audio, sr)
    return audio
