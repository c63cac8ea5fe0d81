"""Practice recording loading."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Union

import librosa
import numpy as np


class RecordingTooShortError(ValueError):
    """The decoded recording cannot fill a single analysis window."""


def load_audio(
    file_path_or_buffer: Union[str, Path, BytesIO],
    sr: int = 44100,
    min_samples: int = 1,
) -> tuple[np.ndarray, int]:
    """Decode a practice recording to mono float samples at ``sr``.

    Parameters
    ----------
    file_path_or_buffer:
        Path to an audio file or a BytesIO buffer containing audio data.
    sr:
        Target sample rate. Defaults to 44100 Hz, the rate the detector's
        frequency bands are tuned for.
    min_samples:
        Fewest samples a usable recording may hold after resampling;
        the scoring engine passes its FFT size.

    Raises
    ------
    RecordingTooShortError
        When the recording decodes to fewer than ``min_samples`` samples.
    """
    audio, sample_rate = librosa.load(file_path_or_buffer, sr=sr, mono=True)
    if audio.size < max(1, min_samples):
        raise RecordingTooShortError(
            f"Recording has {audio.size} samples, need at least {max(1, min_samples)}"
        )
    return audio, sample_rate
