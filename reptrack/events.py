"""
Motion event fan-out.

The device stream is pushed into a MotionEventBus; consumers attach with
subscribe() and get back a Subscription. Closing a subscription detaches
the handler immediately, so no straggler event reaches it afterwards.

Usage:
    bus = MotionEventBus()
    with bus.subscribe(handler):
        ...  # handler sees every published event
"""

from typing import Callable, List

from .models import MotionEvent

MotionHandler = Callable[[MotionEvent], None]


class Subscription:
    """Handle for one attached handler. Safe to close more than once."""

    def __init__(self, bus: "MotionEventBus", handler: MotionHandler):
        self._bus = bus
        self.handler = handler
        self.active = True

    def close(self):
        if not self.active:
            return
        self.active = False
        self._bus._detach(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class MotionEventBus:
    """Single-threaded publisher; handlers run synchronously in arrival order."""

    def __init__(self):
        self._subs: List[Subscription] = []

    def subscribe(self, handler: MotionHandler) -> Subscription:
        sub = Subscription(self, handler)
        self._subs.append(sub)
        return sub

    def _detach(self, sub: Subscription):
        try:
            self._subs.remove(sub)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, event: MotionEvent):
        for sub in list(self._subs):
            # a handler earlier in this loop may have closed a later one
            if sub.active:
                sub.handler(event)
