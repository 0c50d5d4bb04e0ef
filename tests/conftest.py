import asyncio

import pytest

from reptrack.models import MotionEvent, Vector3


def gravity_event(t, x, y, z):
    return MotionEvent(timestamp=t, acceleration_including_gravity=Vector3(x, y, z))


def motion_event(t, axis, value):
    values = {"x": 0.0, "y": 0.0, "z": 0.0}
    values[axis] = value
    return MotionEvent(timestamp=t, acceleration=Vector3(**values))


async def wait_for_subscriber(bus, count=1):
    while bus.subscriber_count < count:
        await asyncio.sleep(0)


def calibration_trace(peaks, step_ms=50, plateau=10, gap=20, t0=0):
    """Square up/down pulses separated by rest; returns [(t, value)]."""
    out = []
    t = t0
    for p in peaks:
        for v in [0.0] * gap + [p] * plateau + [-p] * plateau + [0.0] * gap:
            out.append((t, v))
            t += step_ms
    return out


@pytest.fixture
def scenario_a():
    values = [0, 0, 0.9, 1.2, 1.0, 0.1, -0.7, -0.9, -0.2, 0, 0]
    return [(i * 150, float(v)) for i, v in enumerate(values)]
