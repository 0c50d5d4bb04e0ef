"""
Repetition detection on the smoothed single-axis signal.

A repetition is one IDLE -> PULLING_UP -> AT_TOP -> LOWERING -> IDLE
cycle. `step()` is the pure transition function; RepetitionDetector
wraps it with the per-rep accumulator, the validity gates (duration,
amplitude, cooldown) and quality scoring.
"""

import logging
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

from .thresholds import ThresholdSet, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "IDLE"
    PULLING_UP = "PULLING_UP"
    AT_TOP = "AT_TOP"
    LOWERING = "LOWERING"


class Effect(str, Enum):
    BEGIN = "BEGIN"        # left IDLE: start a new accumulator
    END_CYCLE = "END"      # back to IDLE: evaluate the cycle


def step(phase: Phase, value: float, th: ThresholdSet) -> Tuple[Phase, Optional[Effect]]:
    """Next phase for one sample, plus the effect the transition triggers."""
    up, down, stable = th.upward_acceleration, th.downward_acceleration, th.stable_threshold

    if phase is Phase.IDLE:
        if value > up:
            return Phase.PULLING_UP, Effect.BEGIN
        return phase, None

    if phase is Phase.PULLING_UP:
        if down < value < stable:
            return Phase.AT_TOP, None
        return phase, None

    if phase is Phase.AT_TOP:
        if value < down:
            return Phase.LOWERING, None
        if value > up:
            # double pump at the top, no rep yet
            return Phase.PULLING_UP, None
        return phase, None

    if phase is Phase.LOWERING:
        if down < value < up:
            return Phase.IDLE, Effect.END_CYCLE
        return phase, None

    raise ValueError(f"unknown phase {phase!r}")


def population_variance(values: List[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def quality_score(duration_ms: float, values: List[float], ideal_duration_ms: float = 2000.0) -> int:
    """
    Score a completed repetition from 0 to 100.

    Penalises distance from the ideal duration, a small range of motion
    and an erratic (high variance) signal.
    """
    quality = 100

    deviation = abs(duration_ms - ideal_duration_ms)
    if deviation > 1000:
        quality -= 15
    elif deviation > 500:
        quality -= 8

    amplitude = (max(values) - min(values)) if values else 0.0
    if amplitude < 1.0:
        quality -= 20
    elif amplitude < 1.5:
        quality -= 10

    if len(values) > 2:
        variance = population_variance(values)
        if variance > 1.5:
            quality -= 15
        elif variance > 0.8:
            quality -= 8

    return max(0, min(100, quality))


class RepData:
    """Accumulator for the repetition in progress."""

    def __init__(self, start_time: Optional[int] = None):
        self.start_time = start_time
        self.values: List[float] = []
        self.max_value = float("-inf")
        self.min_value = float("inf")

    def add(self, value: float):
        self.values.append(value)
        if value > self.max_value:
            self.max_value = value
        if value < self.min_value:
            self.min_value = value

    @property
    def amplitude(self) -> float:
        if not self.values:
            return 0.0
        return self.max_value - self.min_value


class DetectorUpdate(NamedTuple):
    phase: Phase
    rep_count: int
    quality: Optional[int]
    rep_completed: bool = False


class RepetitionDetector:
    """
    Four-phase repetition counter with quality scoring.

    Usage:
        det = RepetitionDetector()
        update = det.process_acceleration(smoothed, timestamp_ms)
        if update.rep_completed:
            print(update.rep_count, update.quality)
    """

    def __init__(
        self,
        thresholds: Optional[ThresholdSet] = None,
        cooldown_ms: float = 400.0,
        ideal_duration_ms: float = 2000.0,
    ):
        self.thresholds = thresholds if thresholds is not None else DEFAULT_THRESHOLDS
        self.cooldown_ms = cooldown_ms
        self.ideal_duration_ms = ideal_duration_ms

        self.phase = Phase.IDLE
        self.rep_count = 0
        self.current = RepData()
        self.last_rep_time: Optional[int] = None
        self.last_quality: Optional[int] = None
        self.last_duration_ms: Optional[float] = None
        self.qualities: List[int] = []

    def set_thresholds(self, partial=None, **overrides):
        """Merge new values into the current thresholds."""
        if isinstance(partial, ThresholdSet):
            partial = partial.to_dict()
        self.thresholds = self.thresholds.merged(partial, **overrides)
        logger.info("Thresholds updated: %s", self.thresholds)

    def process_acceleration(self, value: float, timestamp: int) -> DetectorUpdate:
        if self.phase is not Phase.IDLE:
            self.current.add(value)

        next_phase, effect = step(self.phase, value, self.thresholds)
        completed = False

        if effect is Effect.BEGIN:
            self.current = RepData(start_time=timestamp)
            self.current.add(value)
        elif effect is Effect.END_CYCLE:
            completed = self._finish_cycle(timestamp)
            self.current = RepData()

        self.phase = next_phase
        return DetectorUpdate(self.phase, self.rep_count, self.last_quality, completed)

    def _finish_cycle(self, timestamp: int) -> bool:
        rep = self.current
        duration = timestamp - rep.start_time
        amplitude = rep.amplitude
        since_last = None if self.last_rep_time is None else timestamp - self.last_rep_time

        th = self.thresholds
        valid = (
            th.min_rep_duration <= duration <= th.max_rep_duration
            and amplitude >= th.min_amplitude
            and (since_last is None or since_last >= self.cooldown_ms)
        )
        if not valid:
            logger.debug("Discarded cycle: duration=%dms amplitude=%.2f", duration, amplitude)
            return False

        self.rep_count += 1
        self.last_rep_time = timestamp
        self.last_duration_ms = duration
        self.last_quality = quality_score(duration, rep.values, self.ideal_duration_ms)
        self.qualities.append(self.last_quality)
        logger.info("Rep %d completed - Quality: %d%%", self.rep_count, self.last_quality)
        return True

    def average_quality(self) -> Optional[float]:
        if not self.qualities:
            return None
        return sum(self.qualities) / len(self.qualities)

    def reset(self):
        self.phase = Phase.IDLE
        self.rep_count = 0
        self.current = RepData()
        self.last_rep_time = None
        self.last_quality = None
        self.last_duration_ms = None
        self.qualities = []
