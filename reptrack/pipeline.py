"""
Synchronous per-sample monitoring pipeline.

    Sample -> SmoothingFilter -> { RepetitionDetector, CadenceEstimator } -> TelemetryRecord

Samples must be fed in arrival order.
"""

from typing import Optional

from . import config
from .cadence import CadenceEstimator
from .models import Sample, TelemetryRecord
from .rep_detector import RepetitionDetector
from .smoothing import SmoothingFilter
from .thresholds import ThresholdSet


class SampleRateLimiter:
    """Drop samples that arrive sooner than `interval_ms` after the last accepted one."""

    def __init__(self, interval_ms: float):
        self.interval_ms = float(interval_ms)
        self.last_accepted: Optional[int] = None

    def accept(self, timestamp: int) -> bool:
        if self.last_accepted is not None and timestamp - self.last_accepted < self.interval_ms:
            return False
        self.last_accepted = timestamp
        return True

    def reset(self):
        self.last_accepted = None


class MonitoringPipeline:
    """
    Filter, detector and cadence estimator for one monitored axis.

    Usage:
        pipe = MonitoringPipeline(sample_rate_hz=30)
        record = pipe.process(sample, axis="y")
    """

    def __init__(
        self,
        sample_rate_hz: float = config.SAMPLE_RATE_HZ,
        smoothing_window: int = config.SMOOTHING_WINDOW,
        thresholds: Optional[ThresholdSet] = None,
        fft_size: int = config.FFT_SIZE,
        f_min_hz: float = config.FFT_MIN_HZ,
        f_max_hz: float = config.FFT_MAX_HZ,
        update_every: int = config.FFT_UPDATE_EVERY,
        smoothing_alpha: float = config.FFT_SMOOTHING_ALPHA,
    ):
        self.sample_rate_hz = float(sample_rate_hz)
        self.filter = SmoothingFilter(smoothing_window)
        self.detector = RepetitionDetector(thresholds)
        self.cadence = CadenceEstimator(
            fft_size=fft_size,
            sample_rate_hz=round(self.sample_rate_hz),
            f_min_hz=f_min_hz,
            f_max_hz=f_max_hz,
            update_every=update_every,
            smoothing_alpha=smoothing_alpha,
        )

    def set_sample_rate(self, sample_rate_hz: float):
        self.sample_rate_hz = float(sample_rate_hz)
        self.cadence.set_sample_rate(round(self.sample_rate_hz))

    def reset(self):
        self.filter.reset()
        self.detector.reset()
        self.cadence.reset()
        self.cadence.set_sample_rate(round(self.sample_rate_hz))

    def process(self, sample: Sample, axis: str) -> TelemetryRecord:
        smoothed = self.filter.add_value(sample.axis_value(axis))
        self.cadence.add_sample(smoothed)
        update = self.detector.process_acceleration(smoothed, sample.timestamp)

        return TelemetryRecord(
            timestamp=sample.timestamp,
            x=sample.x,
            y=sample.y,
            z=sample.z,
            axis=axis,
            smoothed=smoothed,
            cadence_hz=self.cadence.last_frequency_hz,
            rep_count=update.rep_count,
            phase=update.phase.value,
            quality=update.quality,
        )
