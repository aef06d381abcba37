"""
meritgov/clock.py

Time sources for the engine. Components take any zero-argument callable
returning integer seconds; these two cover wall-clock and scripted time.
"""

import time


class SystemClock:
    """Wall-clock seconds."""

    def __call__(self) -> int:
        return int(time.time())


class ManualClock:
    """A clock that only moves when told to (demos and tests)."""

    def __init__(self, start: int = 0):
        self.current = start

    def __call__(self) -> int:
        return self.current

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"cannot move clock backwards by {seconds}")
        self.current += seconds
        return self.current

    def set(self, timestamp: int) -> None:
        if timestamp < self.current:
            raise ValueError(f"cannot move clock backwards to {timestamp}")
        self.current = timestamp
