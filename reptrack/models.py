"""
Data records shared across reptrack.

A device delivers MotionEvents at irregular intervals. Each event may
carry acceleration with gravity removed, acceleration including gravity,
or both. Components further down the pipeline only ever see a resolved
Sample on a single axis.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

AXES = ("x", "y", "z")


def _opt_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Vector3:
    """Raw 3-axis reading; any component may be missing."""
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Vector3"]:
        if not isinstance(data, dict):
            return None
        return cls(
            x=_opt_float(data.get("x")),
            y=_opt_float(data.get("y")),
            z=_opt_float(data.get("z")),
        )

    def get(self, axis: str) -> Optional[float]:
        return getattr(self, axis)

    def is_empty(self) -> bool:
        return self.x is None and self.y is None and self.z is None

    def is_complete(self) -> bool:
        return self.x is not None and self.y is not None and self.z is not None


@dataclass(frozen=True)
class Sample:
    """One accepted acceleration reading (timestamp in milliseconds)."""
    x: float
    y: float
    z: float
    timestamp: int

    def axis_value(self, axis: str) -> float:
        return getattr(self, axis)


@dataclass(frozen=True)
class MotionEvent:
    """A single report from the device motion source."""
    timestamp: int
    acceleration: Optional[Vector3] = None
    acceleration_including_gravity: Optional[Vector3] = None

    @classmethod
    def from_dict(cls, msg: Dict[str, Any]) -> "MotionEvent":
        """Build an event from the JSON frame a device client sends."""
        return cls(
            timestamp=int(msg.get("timestamp") or 0),
            acceleration=Vector3.from_dict(msg.get("acceleration")),
            acceleration_including_gravity=Vector3.from_dict(
                msg.get("accelerationIncludingGravity") or msg.get("acceleration_including_gravity")
            ),
        )

    def linear_or_gravity(self) -> Optional[Vector3]:
        """Gravity-excluded data, or gravity-included when the former is entirely null."""
        if self.acceleration is not None and not self.acceleration.is_empty():
            return self.acceleration
        if self.acceleration_including_gravity is not None and not self.acceleration_including_gravity.is_empty():
            return self.acceleration_including_gravity
        return None

    def resolve(self, axis: str) -> Optional[Sample]:
        """
        Turn this event into a Sample tracked on `axis`.

        Returns None when there is no usable vector or when the tracked
        component itself is missing. Other missing components read as 0.0.
        """
        vec = self.linear_or_gravity()
        if vec is None or vec.get(axis) is None:
            return None
        return Sample(
            x=vec.x if vec.x is not None else 0.0,
            y=vec.y if vec.y is not None else 0.0,
            z=vec.z if vec.z is not None else 0.0,
            timestamp=self.timestamp,
        )


@dataclass
class TelemetryRecord:
    """Flat per-sample record handed to UI and logging collaborators."""
    timestamp: int
    x: float
    y: float
    z: float
    axis: str
    smoothed: float
    cadence_hz: Optional[float]
    rep_count: int
    phase: str
    quality: Optional[int]

    @property
    def cadence_rpm(self) -> Optional[float]:
        if self.cadence_hz is None:
            return None
        return self.cadence_hz * 60.0

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["cadence_rpm"] = self.cadence_rpm
        return out
