"""
Dominant-axis detection.

Before a session the device is held still for a moment; the axis with the
largest mean absolute gravity-inclusive reading is the one aligned with
gravity, and that is the axis the movement is tracked on.
"""

import asyncio
import logging
from typing import Dict

from .config import AXIS_SAMPLES, AXIS_TIMEOUT_MS, DEFAULT_AXIS
from .events import MotionEventBus
from .models import MotionEvent

logger = logging.getLogger(__name__)


def dominant_axis(totals: Dict[str, float]) -> str:
    """
    Pick the axis with the largest accumulated magnitude.

    Exact ties favour x, then y, then z.
    """
    ax, ay, az = totals.get("x", 0.0), totals.get("y", 0.0), totals.get("z", 0.0)
    if ax >= ay and ax >= az:
        return "x"
    if ay >= ax and ay >= az:
        return "y"
    return "z"


class AxisSelector:
    """
    Observe a few gravity-inclusive samples and report the vertical axis.

    Usage:
        selector = AxisSelector(bus)
        axis = await selector.detect()
    """

    def __init__(self, source: MotionEventBus, default_axis: str = DEFAULT_AXIS):
        self.source = source
        self.default_axis = default_axis
        self.last_averages: Dict[str, float] = {}

    async def detect(self, sample_count: int = AXIS_SAMPLES, timeout_ms: int = AXIS_TIMEOUT_MS) -> str:
        """
        Wait for `sample_count` complete samples, or `timeout_ms`.

        Falls back to the default axis on timeout. The subscription is
        released on every exit path, including cancellation.
        """
        sample_count = max(1, int(sample_count))
        loop = asyncio.get_running_loop()
        result = loop.create_future()
        totals = {"x": 0.0, "y": 0.0, "z": 0.0}
        seen = 0

        def on_event(event: MotionEvent):
            nonlocal seen
            if result.done():
                return
            g = event.acceleration_including_gravity
            if g is None or not g.is_complete():
                return
            totals["x"] += abs(g.x)
            totals["y"] += abs(g.y)
            totals["z"] += abs(g.z)
            seen += 1
            if seen >= sample_count:
                result.set_result(dominant_axis(totals))

        with self.source.subscribe(on_event):
            try:
                axis = await asyncio.wait_for(result, timeout=timeout_ms / 1000.0)
            except asyncio.TimeoutError:
                logger.info("Axis detection timed out after %d ms (%d/%d samples), using %s",
                            timeout_ms, seen, sample_count, self.default_axis)
                return self.default_axis

        self.last_averages = {k: v / sample_count for k, v in totals.items()}
        logger.info("Vertical axis detected: %s (X:%.2f, Y:%.2f, Z:%.2f)", axis.upper(),
                    self.last_averages["x"], self.last_averages["y"], self.last_averages["z"])
        return axis
