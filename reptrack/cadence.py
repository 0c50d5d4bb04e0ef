"""
Spectral cadence estimation.

Keeps the most recent `fft_size` smoothed samples in a ring buffer and,
every `update_every` samples once the buffer is full, finds the strongest
frequency in the repetition band (default 0.2-5 Hz) with a Hann-windowed
real FFT. Successive estimates are exponentially smoothed.
"""

import logging
import math
from typing import Callable, Optional, NamedTuple

import numpy as np

logger = logging.getLogger(__name__)


class CadenceEstimate(NamedTuple):
    frequency_hz: float
    power: float

    @property
    def rpm(self) -> float:
        return self.frequency_hz * 60.0


class CadenceEstimator:
    """
    Dominant-frequency tracker over a sliding window.

    Usage:
        est = CadenceEstimator(fft_size=128, sample_rate_hz=30)
        out = est.add_sample(smoothed)   # None most of the time
        if out is not None:
            print(out.rpm)
    """

    def __init__(
        self,
        fft_size: int = 128,
        sample_rate_hz: float = 30.0,
        f_min_hz: float = 0.2,
        f_max_hz: float = 5.0,
        update_every: int = 4,
        smoothing_alpha: float = 0.35,
        transform: Optional[Callable[[np.ndarray], np.ndarray]] = np.fft.rfft,
    ):
        """
        Args:
            fft_size: Ring buffer / transform length
            sample_rate_hz: Rate used to map bins to Hz
            f_min_hz, f_max_hz: Band searched for the peak
            update_every: Run the transform once per this many samples
            smoothing_alpha: Weight of a new estimate (0-1)
            transform: Real-input FFT returning complex bins; None disables
                       the estimator
        """
        if int(fft_size) < 2:
            raise ValueError(f"fft_size must be >= 2, got {fft_size}")
        if int(update_every) < 1:
            raise ValueError(f"update_every must be >= 1, got {update_every}")

        self.fft_size = int(fft_size)
        self.sample_rate_hz = max(1.0, float(sample_rate_hz))
        self.f_min_hz = float(f_min_hz)
        self.f_max_hz = float(f_max_hz)
        self.update_every = int(update_every)
        self.smoothing_alpha = min(1.0, max(0.0, float(smoothing_alpha)))

        self._ring = np.zeros(self.fft_size, dtype=np.float64)
        self._window = np.hanning(self.fft_size)
        self._index = 0
        self._filled = False
        self._samples_seen = 0

        self.last_frequency_hz: Optional[float] = None
        self.last_power: float = 0.0

        self._transform = transform
        self.enabled = transform is not None
        self.reason = None if self.enabled else "fft_backend_unavailable"
        if not self.enabled:
            logger.warning("CadenceEstimator: no FFT backend, cadence disabled")

    @property
    def filled(self) -> bool:
        return self._filled

    @property
    def samples_seen(self) -> int:
        return self._samples_seen

    @property
    def bin_hz(self) -> float:
        return self.sample_rate_hz / self.fft_size

    def band_bins(self):
        """Inclusive (k_min, k_max) bin range for the configured band."""
        bin_hz = self.bin_hz
        k_min = max(1, int(math.ceil(self.f_min_hz / bin_hz)))
        k_max = min(self.fft_size // 2, int(math.floor(self.f_max_hz / bin_hz)))
        return k_min, k_max

    def set_sample_rate(self, sample_rate_hz: float):
        """Change the Hz-to-bin mapping; buffered samples are kept."""
        self.sample_rate_hz = max(1.0, float(sample_rate_hz))

    def reset(self):
        self._ring.fill(0.0)
        self._index = 0
        self._filled = False
        self._samples_seen = 0
        self.last_frequency_hz = None
        self.last_power = 0.0

    def add_sample(self, value: float) -> Optional[CadenceEstimate]:
        if not self.enabled:
            return None

        self._ring[self._index] = value
        self._index = (self._index + 1) % self.fft_size
        if self._index == 0:
            self._filled = True

        self._samples_seen += 1
        if not self._filled:
            return None
        if self._samples_seen % self.update_every != 0:
            return None

        k_min, k_max = self.band_bins()
        if k_max <= k_min:
            return None

        # oldest sample first
        frame = np.roll(self._ring, -self._index)
        frame = (frame - frame.mean()) * self._window

        try:
            spectrum = self._transform(frame)
        except Exception as e:
            logger.error("CadenceEstimator: FFT failed, disabling cadence: %s", e)
            self.enabled = False
            self.reason = f"fft_failed:{e}"
            return None

        band = np.asarray(spectrum[k_min:k_max + 1])
        power = band.real ** 2 + band.imag ** 2
        best = int(np.argmax(power))
        best_k = k_min + best
        best_power = float(power[best])

        freq_hz = best_k * self.bin_hz
        if self.last_frequency_hz is None:
            smoothed = freq_hz
        else:
            a = self.smoothing_alpha
            smoothed = a * freq_hz + (1.0 - a) * self.last_frequency_hz

        self.last_frequency_hz = smoothed
        self.last_power = best_power
        return CadenceEstimate(frequency_hz=smoothed, power=best_power)
