"""
Moving-average smoothing for a single scalar channel.

Removes high-frequency sensor jitter before the signal reaches the
repetition detector and the cadence estimator.
"""

from collections import deque
from typing import Deque


class SmoothingFilter:
    """
    Fixed-size sliding-window mean.

    Usage:
        f = SmoothingFilter(window_size=5)
        smoothed = f.add_value(raw)
    """

    def __init__(self, window_size: int = 5):
        """
        Args:
            window_size: Number of most recent values averaged (>= 1)
        """
        if int(window_size) < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self.window_size = int(window_size)
        self._window: Deque[float] = deque(maxlen=self.window_size)

    def add_value(self, value: float) -> float:
        """Push a value (oldest one falls out) and return the window mean."""
        self._window.append(float(value))
        return self.average

    @property
    def average(self) -> float:
        if not self._window:
            return 0.0
        return sum(self._window) / len(self._window)

    def __len__(self) -> int:
        return len(self._window)

    def reset(self):
        self._window.clear()
