"""Frame source: PCM sample chunks to analysis frames."""

from __future__ import annotations

from typing import Iterator

import librosa
import numpy as np
from scipy.signal import get_window

from tapmeter.analysis.models import Frame

_DEFAULT_SR = 44100


class FrameSource:
    """Slices a sample stream into overlapping windows and transforms them.

    Magnitudes follow the browser analyser convention the detector's
    thresholds are expressed in: Blackman window, ``|X| / N``, exponential
    smoothing across frames, then dB mapped linearly from
    ``[min_db, max_db]`` onto ``[0, 255]``.

    Parameters
    ----------
    sr:
        Sample rate in Hz.
    fft_size:
        Window length in samples (a power of two).
    hop_length:
        Samples between consecutive frames.
    smoothing:
        Weight of the previous frame's spectrum (0 disables smoothing).
    start_ms:
        Timestamp of the first sample of the stream.

    Frame timestamps mark the *end* of each window, i.e. the moment the
    frame becomes available to a live analysis loop.
    """

    def __init__(
        self,
        sr: int = _DEFAULT_SR,
        fft_size: int = 2048,
        hop_length: int = 512,
        smoothing: float = 0.2,
        min_db: float = -90.0,
        max_db: float = -10.0,
        start_ms: float = 0.0,
    ) -> None:
        if hop_length <= 0 or hop_length > fft_size:
            raise ValueError(f"hop_length must be in (0, {fft_size}], got {hop_length}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got {smoothing}")
        if max_db <= min_db:
            raise ValueError("max_db must be greater than min_db")
        self.sr = sr
        self.fft_size = fft_size
        self.hop_length = hop_length
        self.n_bins = fft_size // 2
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self.start_ms = start_ms
        self._window = get_window("blackman", fft_size).astype(np.float32)
        self.reset()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def push(self, chunk: np.ndarray) -> list[Frame]:
        """Append samples and return every frame that became complete."""
        chunk = np.asarray(chunk, dtype=np.float32).ravel()
        if len(chunk) == 0:
            return []
        self._pending = np.concatenate([self._pending, chunk])

        frames = []
        while len(self._pending) >= self.fft_size:
            window = self._pending[:self.fft_size].copy()
            end_sample = self._consumed + self.fft_size
            frames.append(Frame(
                timestamp=self.start_ms + end_sample * 1000.0 / self.sr,
                time_domain=window,
                magnitudes=self._magnitudes(window),
            ))
            self._pending = self._pending[self.hop_length:]
            self._consumed += self.hop_length
        return frames

    def frames(self, audio: np.ndarray) -> Iterator[Frame]:
        """Yield frames for a whole recording, continuing the current stream."""
        audio = np.asarray(audio, dtype=np.float32).ravel()
        for start in range(0, len(audio), self.hop_length):
            yield from self.push(audio[start:start + self.hop_length])

    @property
    def position_ms(self) -> float:
        """Stream time of the newest sample received."""
        return self.start_ms + (self._consumed + len(self._pending)) * 1000.0 / self.sr

    def reset(self) -> None:
        self._pending = np.zeros(0, dtype=np.float32)
        self._consumed = 0
        self._smoothed = np.zeros(self.n_bins, dtype=np.float64)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _magnitudes(self, window: np.ndarray) -> np.ndarray:
        spectrum = np.abs(np.fft.rfft(window * self._window))[:self.n_bins] / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * spectrum
        db = librosa.amplitude_to_db(self._smoothed, ref=1.0, amin=1e-10, top_db=None)
        scaled = (db - self.min_db) * 255.0 / (self.max_db - self.min_db)
        return np.clip(scaled, 0.0, 255.0)
