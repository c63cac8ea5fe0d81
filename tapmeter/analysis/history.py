"""Bounded history of recent taps."""

from __future__ import annotations

from collections import deque
from typing import Iterator

from tapmeter.analysis.models import TapEvent

_DEFAULT_MAX_LENGTH = 100


class TapHistory:
    """Insertion-ordered ring of the most recent taps.

    Used for feedback and quick statistics; once ``max_length`` taps are held
    the oldest one is evicted on every append.
    """

    def __init__(self, max_length: int = _DEFAULT_MAX_LENGTH) -> None:
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")
        self._taps: deque[TapEvent] = deque(maxlen=max_length)

    def append(self, tap: TapEvent) -> None:
        self._taps.append(tap)

    def snapshot(self) -> list[TapEvent]:
        """Copy of the held taps, oldest first."""
        return list(self._taps)

    def latest(self, n: int = 1) -> list[TapEvent]:
        """The ``n`` most recent taps, oldest first."""
        if n <= 0:
            return []
        return list(self._taps)[-n:]

    @property
    def max_length(self) -> int:
        return self._taps.maxlen

    def clear(self) -> None:
        self._taps.clear()

    def __len__(self) -> int:
        return len(self._taps)

    def __iter__(self) -> Iterator[TapEvent]:
        return iter(list(self._taps))
