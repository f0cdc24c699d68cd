from __future__ import annotations

import time
from typing import Callable, Optional


Clock = Callable[[], float]


class CountdownTimer:
    """Whole-second countdown driven by external ``tick()`` calls.

    Ticks arrive at most once per second, but may arrive late (a suspended
    host, a slow event loop). Each tick consumes the whole wall-clock seconds
    elapsed since the previous one, measured on a monotonic clock, and never
    less than one second. The fraction left over is carried into the next
    tick, so steadily late ticks do not stretch the countdown.

    With ``linger_at_zero`` the countdown shows 0 for one tick before
    reporting time-up, which gives players that reached the last second a
    visible zero. Time-up is reported exactly once per ``start``.
    """

    def __init__(self, clock: Clock = time.monotonic, *, linger_at_zero: bool = True):
        self._clock = clock
        self._linger_at_zero = linger_at_zero
        self.remaining: int = 0
        self.running: bool = False
        self.paused: bool = False
        self.expired: bool = False
        self._last_tick: Optional[float] = None
        self._carry = 0.0

    def start(self, duration: int) -> None:
        if duration < 0:
            raise ValueError("duration must not be negative")
        self.remaining = duration
        self.running = True
        self.paused = False
        self.expired = False
        self._last_tick = self._clock()
        self._carry = 0.0

    def restore(self, remaining: int, paused: bool = False) -> None:
        """Continue a countdown rebuilt from a stored session."""
        self.start(max(0, remaining))
        self.paused = paused

    def stop(self) -> None:
        self.running = False
        self.paused = False

    def pause(self) -> None:
        if self.running:
            self.paused = True

    def resume(self) -> None:
        if self.running and self.paused:
            self.paused = False
            self._last_tick = self._clock()

    def tick(self) -> bool:
        """Advance the countdown. Returns True on the single time-up tick."""
        if not self.running or self.paused or self.expired:
            return False

        if self.remaining == 0:
            self.expired = True
            return True

        now = self._clock()
        elapsed = now - self._last_tick if self._last_tick is not None else 1.0
        self._last_tick = now

        # tolerate float error in the carried fraction
        self._carry += elapsed
        step = max(1, int(self._carry + 1e-6))
        self._carry = max(0.0, self._carry - step)
        self.remaining = max(0, self.remaining - step)

        if self.remaining == 0 and not self._linger_at_zero:
            self.expired = True
            return True
        return False
