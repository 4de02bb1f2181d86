"""
Real implementations of interfaces for production use.
"""

import time

from .interfaces import ClockInterface


class RealClock(ClockInterface):
    """
    Real clock implementation using system time.
    """

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)
