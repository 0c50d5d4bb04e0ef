"""
Detector threshold sets and their on-disk store.

A ThresholdSet is immutable; partial updates produce a new set with the
unspecified fields carried over from the old one.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# Wire names used by the device app and stored calibration files
_CAMEL = {
    "upward_acceleration": "upwardAcceleration",
    "downward_acceleration": "downwardAcceleration",
    "min_amplitude": "minAmplitude",
    "min_rep_duration": "minRepDuration",
    "max_rep_duration": "maxRepDuration",
    "stable_threshold": "stableThreshold",
}
_SNAKE = {v: k for k, v in _CAMEL.items()}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ThresholdSet:
    """Parameters governing RepetitionDetector transitions and validity gates."""
    upward_acceleration: float = 0.8
    downward_acceleration: float = -0.6
    min_amplitude: float = 1.0
    min_rep_duration: float = 800.0   # ms
    max_rep_duration: float = 5000.0  # ms
    stable_threshold: float = 0.3

    def merged(self, partial: Optional[Mapping[str, Any]] = None, **overrides) -> "ThresholdSet":
        """
        Return a copy with the given fields replaced.

        Accepts snake_case or camelCase keys; unknown keys and None values
        are ignored.
        """
        updates: Dict[str, float] = {}
        items = dict(partial or {})
        items.update(overrides)
        names = {f.name for f in fields(self)}
        for key, value in items.items():
            name = _SNAKE.get(key, key)
            if name in names and value is not None:
                updates[name] = float(value)
        return replace(self, **updates)

    def to_dict(self, camel: bool = False) -> Dict[str, float]:
        data = asdict(self)
        if camel:
            return {_CAMEL[k]: v for k, v in data.items()}
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ThresholdSet":
        return cls().merged(data)


DEFAULT_THRESHOLDS = ThresholdSet()


class ThresholdStore:
    """
    JSON file holding the last calibrated ThresholdSet and when it was made.

    Usage:
        store = ThresholdStore("calibration.json")
        saved_at = store.save(thresholds)
        loaded = store.load()   # (ThresholdSet, saved_at) or None
    """

    def __init__(self, path: str):
        self.path = path

    def save(self, thresholds: ThresholdSet, saved_at: Optional[str] = None) -> Optional[str]:
        saved_at = saved_at or utc_now_iso()
        payload = {
            "thresholds": thresholds.to_dict(camel=True),
            "calibrationDate": saved_at,
        }
        tmp = self.path + ".tmp"
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error("Could not persist thresholds to %s: %s", self.path, e)
            return None
        return saved_at

    def load(self) -> Optional[Tuple[ThresholdSet, Optional[str]]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.error("Error loading thresholds from %s: %s", self.path, e)
            return None

        if not isinstance(payload, dict) or not isinstance(payload.get("thresholds"), dict):
            logger.error("Ignoring malformed threshold file %s", self.path)
            return None
        try:
            thresholds = ThresholdSet.from_dict(payload["thresholds"])
        except (TypeError, ValueError) as e:
            logger.error("Ignoring malformed threshold file %s: %s", self.path, e)
            return None
        return thresholds, payload.get("calibrationDate")

    def clear(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
