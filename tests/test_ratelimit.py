from __future__ import annotations

import ratelimit
from ratelimit import SlidingWindowLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_limit_and_window(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr(ratelimit.time, "monotonic", clock)
    limiter = SlidingWindowLimiter(limit=2, window_s=60, message="slow down")

    assert limiter.hit("1.2.3.4")
    assert limiter.hit("1.2.3.4")
    assert not limiter.hit("1.2.3.4")
    assert limiter.hit("5.6.7.8")

    clock.now += 61
    assert limiter.hit("1.2.3.4")


def test_idle_clients_are_forgotten(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr(ratelimit.time, "monotonic", clock)
    limiter = SlidingWindowLimiter(limit=5, window_s=60, message="slow down")

    for n in range(10):
        limiter.hit(f"10.0.0.{n}")
    assert limiter.tracked_clients() == 10

    clock.now += 61
    limiter.hit("10.0.1.1")
    assert limiter.tracked_clients() == 1
