from __future__ import annotations

from unittest import TestCase

from .timer import CountdownTimer


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now += seconds


class CountdownTimerTests(TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.timer = CountdownTimer(self.clock)

    def _tick(self, seconds: float = 1.0) -> bool:
        self.clock.advance(seconds)
        return self.timer.tick()

    def test_counts_down_once_per_second(self):
        self.timer.start(3)
        self.assertFalse(self._tick())
        self.assertEqual(self.timer.remaining, 2)

    def test_time_up_fires_exactly_once_on_tick_after_zero(self):
        self.timer.start(2)
        fired = [self._tick() for _ in range(6)]
        self.assertEqual(fired, [False, False, True, False, False, False])
        self.assertEqual(self.timer.remaining, 0)
        self.assertTrue(self.timer.expired)

    def test_late_tick_consumes_elapsed_seconds(self):
        self.timer.start(30)
        self._tick(5.2)
        self.assertEqual(self.timer.remaining, 25)

    def test_never_goes_negative(self):
        self.timer.start(3)
        self._tick(10)
        self.assertEqual(self.timer.remaining, 0)
        self.assertTrue(self._tick())

    def test_early_tick_still_counts_one_second(self):
        self.timer.start(3)
        self._tick(0.2)
        self.assertEqual(self.timer.remaining, 2)

    def test_pause_freezes_and_resume_continues(self):
        self.timer.start(10)
        self._tick()
        self.timer.pause()
        for _ in range(5):
            self.assertFalse(self._tick())
        self.assertEqual(self.timer.remaining, 9)

        self.clock.advance(60)
        self.timer.resume()
        self._tick()
        self.assertEqual(self.timer.remaining, 8)

    def test_start_resets(self):
        self.timer.start(1)
        self._tick()
        self.assertTrue(self._tick())
        self.timer.start(5)
        self.assertEqual(self.timer.remaining, 5)
        self.assertFalse(self.timer.expired)

    def test_stopped_timer_ignores_ticks(self):
        self.timer.start(5)
        self.timer.stop()
        self.assertFalse(self._tick())
        self.assertEqual(self.timer.remaining, 5)

    def test_without_linger_expires_on_reaching_zero(self):
        timer = CountdownTimer(self.clock, linger_at_zero=False)
        timer.start(2)
        self.clock.advance()
        self.assertFalse(timer.tick())
        self.clock.advance()
        self.assertTrue(timer.tick())
        self.clock.advance()
        self.assertFalse(timer.tick())

    def test_restore_keeps_remaining_and_pause(self):
        self.timer.restore(7, paused=True)
        self.assertFalse(self._tick())
        self.assertEqual(self.timer.remaining, 7)
        self.timer.resume()
        self._tick()
        self.assertEqual(self.timer.remaining, 6)

    def test_rejects_negative_duration(self):
        with self.assertRaises(ValueError):
            self.timer.start(-1)

    def test_fractional_lateness_is_carried(self):
        self.timer.start(10)
        self._tick(1.5)
        self.assertEqual(self.timer.remaining, 9)
        self._tick(1.5)
        self.assertEqual(self.timer.remaining, 7)

    def test_steadily_late_ticks_do_not_stretch_the_question(self):
        self.timer.start(30)
        started = self.clock.now
        reached_zero_at = None
        fired = False
        for _ in range(40):
            fired = self._tick(1.4)
            if reached_zero_at is None and self.timer.remaining == 0:
                reached_zero_at = self.clock.now - started
            if fired:
                break
        self.assertTrue(fired)
        self.assertLessEqual(reached_zero_at, 31)
        self.assertLessEqual(self.clock.now - started, 32.5)
