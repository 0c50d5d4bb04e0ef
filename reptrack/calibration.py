"""
Automatic threshold calibration.

The user performs a handful of controlled repetitions. A looser
three-phase machine (IDLE -> MOVING -> COOLDOWN) segments them, keeps
per-rep statistics, and once the target count is reached derives a
ThresholdSet for the RepetitionDetector.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple, Union

from .rep_detector import RepData, population_variance
from .thresholds import ThresholdSet

logger = logging.getLogger(__name__)


class CalibrationPhase(str, Enum):
    IDLE = "IDLE"
    MOVING = "MOVING"
    COOLDOWN = "COOLDOWN"


@dataclass(frozen=True)
class CalibrationConfig:
    """Segmentation gates; independent of the detector's own thresholds."""
    start_threshold: float = 0.6
    stop_threshold: float = 0.3
    min_samples: int = 15
    min_duration_ms: float = 500.0
    max_duration_ms: float = 5000.0
    min_amplitude: float = 0.8
    cooldown_ms: float = 500.0


@dataclass(frozen=True)
class RepStats:
    max_value: float
    min_value: float
    amplitude: float
    duration: float
    variance: float


class CalibrationProgress(NamedTuple):
    rep_count: int
    target_reps: int
    phase: CalibrationPhase


class CalibrationResult(NamedTuple):
    thresholds: ThresholdSet
    reps_detected: int
    avg_max: float
    avg_min: float
    avg_amplitude: float


def _mean_std(values: List[float]) -> Tuple[float, float]:
    mean = sum(values) / len(values)
    return mean, math.sqrt(population_variance(values))


def derive_thresholds(reps: List[RepStats]) -> Optional[CalibrationResult]:
    """
    Build a ThresholdSet from collected repetitions.

    Peak thresholds sit 0.8 standard deviations inside the observed
    averages. Returns None when there is nothing to derive from.
    """
    if not reps:
        return None

    avg_max, std_max = _mean_std([r.max_value for r in reps])
    avg_min, std_min = _mean_std([r.min_value for r in reps])
    avg_amplitude = sum(r.amplitude for r in reps) / len(reps)

    thresholds = ThresholdSet(
        upward_acceleration=max(0.4, avg_max - 0.8 * std_max),
        downward_acceleration=min(-0.3, avg_min + 0.8 * std_min),
        min_amplitude=0.6 * avg_amplitude,
        min_rep_duration=700.0,
        max_rep_duration=5000.0,
        stable_threshold=0.25,
    )
    return CalibrationResult(thresholds, len(reps), avg_max, avg_min, avg_amplitude)


class AutoCalibrator:
    """
    One-shot threshold learner; re-arm with start_calibration() before each use.

    Usage:
        cal = AutoCalibrator(target_reps=5)
        cal.start_calibration()
        out = cal.process_value(smoothed, timestamp_ms)
        if isinstance(out, CalibrationResult):
            detector.set_thresholds(out.thresholds)
    """

    def __init__(self, target_reps: int = 5, config: Optional[CalibrationConfig] = None):
        if int(target_reps) < 1:
            raise ValueError(f"target_reps must be >= 1, got {target_reps}")
        self.target_reps = int(target_reps)
        self.config = config or CalibrationConfig()

        self.is_calibrating = False
        self.rep_count = 0
        self.reps: List[RepStats] = []
        self.current = RepData()
        self.phase = CalibrationPhase.IDLE
        self.last_transition_time: Optional[int] = None
        self.result: Optional[CalibrationResult] = None

    def start_calibration(self):
        self.is_calibrating = True
        self.rep_count = 0
        self.reps = []
        self.current = RepData()
        self.phase = CalibrationPhase.IDLE
        self.last_transition_time = None
        self.result = None
        logger.info("Calibration armed, waiting for %d reps", self.target_reps)

    def stop_calibration(self):
        """Cancel; partial data is discarded and no thresholds are produced."""
        if self.is_calibrating:
            logger.info("Calibration cancelled at %d/%d reps", self.rep_count, self.target_reps)
        self.is_calibrating = False
        self.reps = []
        self.current = RepData()
        self.phase = CalibrationPhase.IDLE

    @property
    def progress_pct(self) -> float:
        return min(100.0, 100.0 * self.rep_count / self.target_reps)

    def process_value(
        self, value: float, timestamp: int
    ) -> Union[CalibrationProgress, CalibrationResult, None]:
        if not self.is_calibrating:
            return None

        cfg = self.config
        if self.phase is CalibrationPhase.IDLE:
            if abs(value) > cfg.start_threshold:
                self.phase = CalibrationPhase.MOVING
                self.current = RepData(start_time=timestamp)
                self.current.add(value)

        elif self.phase is CalibrationPhase.MOVING:
            self.current.add(value)
            if abs(value) < cfg.stop_threshold and len(self.current.values) > cfg.min_samples:
                if self._record_candidate(timestamp) and self.rep_count >= self.target_reps:
                    return self._finish()
                self.phase = CalibrationPhase.COOLDOWN
                self.last_transition_time = timestamp

        elif self.phase is CalibrationPhase.COOLDOWN:
            if timestamp - self.last_transition_time > cfg.cooldown_ms:
                self.phase = CalibrationPhase.IDLE

        return CalibrationProgress(self.rep_count, self.target_reps, self.phase)

    def _record_candidate(self, timestamp: int) -> bool:
        cfg = self.config
        rep = self.current
        duration = timestamp - rep.start_time
        amplitude = rep.amplitude
        if not (cfg.min_duration_ms <= duration <= cfg.max_duration_ms and amplitude >= cfg.min_amplitude):
            logger.debug("Calibration candidate rejected: duration=%dms amplitude=%.2f", duration, amplitude)
            return False

        self.reps.append(RepStats(
            max_value=rep.max_value,
            min_value=rep.min_value,
            amplitude=amplitude,
            duration=duration,
            variance=population_variance(rep.values),
        ))
        self.rep_count += 1
        logger.info("Calibration rep %d/%d detected - Amplitude: %.2f",
                    self.rep_count, self.target_reps, amplitude)
        return True

    def _finish(self) -> Optional[CalibrationResult]:
        self.is_calibrating = False
        self.phase = CalibrationPhase.IDLE
        self.result = derive_thresholds(self.reps)
        if self.result is None:
            logger.warning("Calibration ended with insufficient data")
        else:
            logger.info("Calibration completed: %s", self.result.thresholds)
        return self.result
