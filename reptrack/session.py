"""
Session controller.

Owns everything a monitoring or calibration session needs (pipeline,
calibrator, detected axis, calibrated thresholds, rate limiter) and the
single mode flag that keeps the two session types mutually exclusive.
Samples arrive through a MotionEventBus subscription that exists only
while a session is active.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from . import config
from .axis import AxisSelector
from .calibration import AutoCalibrator, CalibrationProgress, CalibrationResult
from .events import MotionEventBus, Subscription
from .models import MotionEvent, TelemetryRecord
from .pipeline import MonitoringPipeline, SampleRateLimiter
from .thresholds import ThresholdSet, ThresholdStore, utc_now_iso

logger = logging.getLogger(__name__)

PermissionGate = Callable[[], Awaitable[bool]]
Listener = Callable[[Dict[str, Any]], None]


class PermissionDenied(Exception):
    """The host refused access to the motion sensor."""


class SessionCancelled(Exception):
    """A pending start was superseded by stop() or another start."""


class Mode(str, Enum):
    IDLE = "IDLE"
    MONITORING = "MONITORING"
    CALIBRATING = "CALIBRATING"


async def _always_granted() -> bool:
    return True


class SessionController:
    """
    Drive monitoring and calibration sessions from a motion event stream.

    Usage:
        ctl = SessionController(bus, store=ThresholdStore(path))
        ctl.add_listener(print)
        await ctl.start_monitoring()
        ...
        ctl.stop()
    """

    def __init__(
        self,
        source: MotionEventBus,
        pipeline: Optional[MonitoringPipeline] = None,
        calibrator: Optional[AutoCalibrator] = None,
        store: Optional[ThresholdStore] = None,
        recorder=None,
        permission_gate: PermissionGate = _always_granted,
        sample_rate_hz: float = config.SAMPLE_RATE_HZ,
        axis_samples: int = config.AXIS_SAMPLES,
        axis_timeout_ms: int = config.AXIS_TIMEOUT_MS,
    ):
        self.source = source
        self.pipeline = pipeline or MonitoringPipeline(sample_rate_hz=sample_rate_hz)
        self.calibrator = calibrator or AutoCalibrator(target_reps=config.CALIBRATION_TARGET_REPS)
        self.store = store
        self.recorder = recorder
        self.permission_gate = permission_gate
        self.axis_selector = AxisSelector(source)
        self.axis_samples = axis_samples
        self.axis_timeout_ms = axis_timeout_ms

        self.mode = Mode.IDLE
        self.axis = config.DEFAULT_AXIS
        self.sample_rate_hz = float(sample_rate_hz)
        self.limiter = SampleRateLimiter(config.sampling_interval_ms(sample_rate_hz))
        self.calibrated_thresholds: Optional[ThresholdSet] = None
        self.calibration_date: Optional[str] = None
        self.last_record: Optional[TelemetryRecord] = None
        # thresholds used when no calibration is stored
        self.base_thresholds: ThresholdSet = self.pipeline.detector.thresholds
        # bumped by stop(); a start whose token changed while it awaited
        # axis detection is abandoned
        self._generation = 0
        self._pending: Optional[int] = None

        self._subscription: Optional[Subscription] = None
        self._listeners: List[Listener] = []

        if store is not None:
            loaded = store.load()
            if loaded is not None:
                self.calibrated_thresholds, self.calibration_date = loaded
                logger.info("Calibrated thresholds loaded. Date: %s", self.calibration_date)

    # -------------------------------------------------------------------------
    # Listeners / configuration
    # -------------------------------------------------------------------------

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, msg: Dict[str, Any]):
        for listener in list(self._listeners):
            listener(msg)

    @property
    def sampling_interval_ms(self) -> float:
        return self.limiter.interval_ms

    def set_sample_rate(self, hz: float):
        """Takes effect immediately, including mid-session; buffers are kept."""
        self.sample_rate_hz = max(1.0, float(hz))
        self.limiter.interval_ms = config.sampling_interval_ms(self.sample_rate_hz)
        self.pipeline.set_sample_rate(self.sample_rate_hz)

    def apply_thresholds(self, thresholds: ThresholdSet) -> bool:
        """Swap detector thresholds; refused while a monitoring session is running."""
        if self.mode is Mode.MONITORING:
            logger.warning("Ignoring threshold change during an active session")
            return False
        self.base_thresholds = thresholds
        self.pipeline.detector.set_thresholds(thresholds)
        return True

    def clear_calibration(self):
        self.calibrated_thresholds = None
        self.calibration_date = None
        if self.store is not None:
            self.store.clear()
        if self.mode is not Mode.MONITORING:
            self.pipeline.detector.set_thresholds(self.base_thresholds)

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def _prepare(self) -> str:
        """
        End any session, then check permission and detect the axis.

        Raises PermissionDenied, or SessionCancelled when stop() or another
        start ran while this one was waiting.
        """
        self.stop()
        token = self._generation
        self._pending = token
        try:
            if not await self.permission_gate():
                raise PermissionDenied("motion sensor permission denied")
            axis = await self.axis_selector.detect(self.axis_samples, self.axis_timeout_ms)
        finally:
            if self._pending == token:
                self._pending = None
        if token != self._generation:
            logger.info("Session start superseded during axis detection")
            raise SessionCancelled("session start was cancelled")
        self.axis = axis
        return axis

    @property
    def starting(self) -> bool:
        return self._pending is not None

    async def start_monitoring(self) -> str:
        """Start counting reps. Returns the detected axis."""
        await self._prepare()

        self.pipeline.reset()
        self.limiter.reset()
        self.pipeline.detector.set_thresholds(self.calibrated_thresholds or self.base_thresholds)

        self.mode = Mode.MONITORING
        self._subscription = self.source.subscribe(self.handle_motion)
        logger.info("Monitoring%s (axis %s)",
                    " with calibration" if self.calibrated_thresholds else "", self.axis.upper())
        return self.axis

    async def start_calibration(self) -> str:
        await self._prepare()

        self.calibrator.start_calibration()
        self.pipeline.filter.reset()
        self.pipeline.cadence.reset()
        self.limiter.reset()

        self.mode = Mode.CALIBRATING
        self._subscription = self.source.subscribe(self.handle_calibration)
        return self.axis

    def stop(self):
        """End whatever session is active or pending. Mode and subscription go together."""
        self._generation += 1
        self._pending = None
        self.mode = Mode.IDLE
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def cancel_calibration(self):
        was_calibrating = self.mode is Mode.CALIBRATING
        self.calibrator.stop_calibration()
        self.stop()
        if was_calibrating:
            self._emit({"type": "calibration_cancelled"})

    # -------------------------------------------------------------------------
    # Sample handlers
    # -------------------------------------------------------------------------

    def _accept(self, event: MotionEvent):
        sample = event.resolve(self.axis)
        if sample is None or not self.limiter.accept(sample.timestamp):
            return None
        return sample

    def handle_motion(self, event: MotionEvent) -> Optional[TelemetryRecord]:
        if self.mode is not Mode.MONITORING:
            return None
        sample = self._accept(event)
        if sample is None:
            return None

        record = self.pipeline.process(sample, self.axis)
        self.last_record = record
        if self.recorder is not None:
            self.recorder.append(record)

        msg = record.to_dict()
        msg["type"] = "telemetry"
        self._emit(msg)
        return record

    def handle_calibration(self, event: MotionEvent):
        if self.mode is not Mode.CALIBRATING:
            return None
        sample = self._accept(event)
        if sample is None:
            return None

        smoothed = self.pipeline.filter.add_value(sample.axis_value(self.axis))
        out = self.calibrator.process_value(smoothed, sample.timestamp)

        if isinstance(out, CalibrationProgress):
            self._emit({
                "type": "calibration_progress",
                "rep_count": out.rep_count,
                "target_reps": out.target_reps,
                "progress_pct": round(self.calibrator.progress_pct, 1),
                "phase": out.phase.value,
                "smoothed": smoothed,
            })
        elif isinstance(out, CalibrationResult):
            self._complete_calibration(out)
        elif not self.calibrator.is_calibrating:
            # ended without enough data; previous thresholds stay
            self.stop()
            self._emit({"type": "calibration_failed", "error": "insufficient_data"})
        return out

    def _complete_calibration(self, result: CalibrationResult):
        self.stop()
        self.calibrated_thresholds = result.thresholds
        saved_at = utc_now_iso()
        if self.store is not None:
            self.store.save(result.thresholds, saved_at)
        self.calibration_date = saved_at
        self._emit({
            "type": "calibration_complete",
            "thresholds": result.thresholds.to_dict(camel=True),
            "calibration_date": saved_at,
            "stats": {
                "reps_detected": result.reps_detected,
                "avg_max": result.avg_max,
                "avg_min": result.avg_min,
                "avg_amplitude": result.avg_amplitude,
            },
        })
