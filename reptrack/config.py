"""
Runtime configuration for reptrack.

Every setting has a default and can be overridden through a REPTRACK_*
environment variable. Values are read once at import time.
"""

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


# =============================================================================
# Server
# =============================================================================

HOST = os.getenv("REPTRACK_HOST", "0.0.0.0")
PORT = _env_int("REPTRACK_PORT", 8765)

BASE_DIR = os.getcwd()
SESSIONS_DIR = os.getenv("REPTRACK_SESSIONS_DIR", os.path.join(BASE_DIR, "sessions"))
EXPORT_DIR = os.getenv("REPTRACK_EXPORT_DIR", os.path.join(BASE_DIR, "exports"))
THRESHOLDS_PATH = os.getenv("REPTRACK_THRESHOLDS_PATH", os.path.join(BASE_DIR, "calibration.json"))
MAX_SESSIONS = max(1, _env_int("REPTRACK_MAX_SESSIONS", 10))

LOG_LEVEL = os.getenv("REPTRACK_LOG_LEVEL", "INFO").upper()

# =============================================================================
# Signal processing
# =============================================================================

# Samples arriving sooner than 1000 / SAMPLE_RATE_HZ ms after the last
# accepted one are dropped.
SAMPLE_RATE_HZ = _env_float("REPTRACK_SAMPLE_RATE_HZ", 30.0)
SMOOTHING_WINDOW = _env_int("REPTRACK_SMOOTHING_WINDOW", 5)

FFT_SIZE = _env_int("REPTRACK_FFT_SIZE", 128)
FFT_MIN_HZ = _env_float("REPTRACK_FFT_MIN_HZ", 0.2)
FFT_MAX_HZ = _env_float("REPTRACK_FFT_MAX_HZ", 5.0)
FFT_UPDATE_EVERY = _env_int("REPTRACK_FFT_UPDATE_EVERY", 4)
FFT_SMOOTHING_ALPHA = _env_float("REPTRACK_FFT_SMOOTHING_ALPHA", 0.35)

# =============================================================================
# Axis detection / calibration
# =============================================================================

AXIS_SAMPLES = _env_int("REPTRACK_AXIS_SAMPLES", 5)
AXIS_TIMEOUT_MS = _env_int("REPTRACK_AXIS_TIMEOUT_MS", 2000)
DEFAULT_AXIS = "y"

CALIBRATION_TARGET_REPS = _env_int("REPTRACK_CALIBRATION_REPS", 5)


def sampling_interval_ms(sample_rate_hz: float) -> float:
    """Minimum spacing between accepted samples for a given rate."""
    return 1000.0 / max(1.0, float(sample_rate_hz))
