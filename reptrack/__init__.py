"""
reptrack - real-time repetition tracking from a 3-axis accelerometer

This package turns a stream of acceleration samples into rep counts,
rep quality scores and cadence:
- SmoothingFilter: moving average on the tracked axis
- AxisSelector: picks the axis aligned with gravity at session start
- CadenceEstimator: dominant repetition frequency via windowed FFT
- RepetitionDetector: four-phase rep state machine with quality scoring
- AutoCalibrator: learns detector thresholds from a few reference reps

Usage:
    from reptrack import SmoothingFilter, RepetitionDetector, CadenceEstimator

    smoother = SmoothingFilter(window_size=5)
    detector = RepetitionDetector()
    cadence = CadenceEstimator(fft_size=128, sample_rate_hz=30)

    # In main loop:
    v = smoother.add_value(sample.y)
    est = cadence.add_sample(v)
    update = detector.process_acceleration(v, sample.timestamp)
"""

from .smoothing import SmoothingFilter
from .axis import AxisSelector, dominant_axis
from .cadence import CadenceEstimator, CadenceEstimate
from .thresholds import ThresholdSet, ThresholdStore, DEFAULT_THRESHOLDS
from .rep_detector import RepetitionDetector, Phase, DetectorUpdate, quality_score
from .calibration import (
    AutoCalibrator,
    CalibrationConfig,
    CalibrationPhase,
    CalibrationProgress,
    CalibrationResult,
    derive_thresholds,
)
from .models import Sample, Vector3, MotionEvent, TelemetryRecord
from .events import MotionEventBus, Subscription
from .pipeline import MonitoringPipeline, SampleRateLimiter
from .session import SessionController, PermissionDenied, SessionCancelled, Mode

__all__ = [
    # Signal
    'SmoothingFilter',
    'AxisSelector',
    'dominant_axis',
    'CadenceEstimator',
    'CadenceEstimate',

    # Detection
    'ThresholdSet',
    'ThresholdStore',
    'DEFAULT_THRESHOLDS',
    'RepetitionDetector',
    'Phase',
    'DetectorUpdate',
    'quality_score',

    # Calibration
    'AutoCalibrator',
    'CalibrationConfig',
    'CalibrationPhase',
    'CalibrationProgress',
    'CalibrationResult',
    'derive_thresholds',

    # Session
    'Sample',
    'Vector3',
    'MotionEvent',
    'TelemetryRecord',
    'MotionEventBus',
    'Subscription',
    'MonitoringPipeline',
    'SampleRateLimiter',
    'SessionController',
    'PermissionDenied',
    'SessionCancelled',
    'Mode',
]

__version__ = '1.0.0'
