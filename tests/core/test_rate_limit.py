from __future__ import annotations

import pytest

pytest.importorskip("loguru")

from oems.core.rate_limit import RateLimiter


class FakeClock:
    """sleep すると時計が進む単調時計のフェイク"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_acquire_does_not_sleep() -> None:
    """初回の acquire は眠らずに送信時刻を記録すること"""
    clock = FakeClock()
    limiter = RateLimiter(0.1, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    assert clock.sleeps == []
    assert limiter.last_dispatch == pytest.approx(1000.0)


def test_second_acquire_waits_remaining_interval() -> None:
    """連続した acquire の間隔が 100ms 以上空くこと"""
    clock = FakeClock()
    limiter = RateLimiter(0.1, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    first = limiter.last_dispatch
    clock.now += 0.03
    limiter.acquire()
    second = limiter.last_dispatch
    assert clock.sleeps == [pytest.approx(0.07)]
    assert second - first >= 0.1 - 1e-9


def test_acquire_after_interval_elapsed_does_not_sleep() -> None:
    """下限間隔が過ぎていれば眠らないこと"""
    clock = FakeClock()
    limiter = RateLimiter(0.1, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    clock.now += 0.5
    limiter.acquire()
    assert clock.sleeps == []


def test_last_dispatch_strictly_increases_with_frozen_clock() -> None:
    """時計が止まっていても最後の送信時刻は単調増加すること"""
    clock = FakeClock()
    limiter = RateLimiter(0.0, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    first = limiter.last_dispatch
    limiter.acquire()
    assert limiter.last_dispatch > first


def test_try_acquire_rejects_without_mutating_state() -> None:
    """間隔不足の try_acquire は False を返し、状態を変えないこと"""
    clock = FakeClock()
    limiter = RateLimiter(0.1, clock=clock, sleep=clock.sleep)
    assert limiter.try_acquire() is True
    first = limiter.last_dispatch
    clock.now += 0.05
    assert limiter.try_acquire() is False
    assert limiter.last_dispatch == first
    clock.now += 0.06
    assert limiter.try_acquire() is True
    assert limiter.last_dispatch > first
    assert clock.sleeps == []


def test_negative_interval_rejected() -> None:
    """負の下限間隔は ValueError"""
    with pytest.raises(ValueError):
        RateLimiter(-0.1)
