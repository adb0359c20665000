from engine.rate_limit import RateLimiter


class _Clock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_call_does_not_wait() -> None:
    clock = _Clock()
    limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)

    assert limiter.wait() == 0.0
    assert clock.sleeps == []


def test_calls_are_spaced_by_the_interval() -> None:
    clock = _Clock()
    limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)

    limiter.wait()
    clock.now += 0.5
    assert limiter.wait() == 1.5
    clock.now += 5.0
    assert limiter.wait() == 0.0

    assert clock.sleeps == [1.5]


def test_context_manager_waits_on_entry() -> None:
    clock = _Clock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)

    with limiter:
        pass
    with limiter:
        pass

    assert clock.sleeps == [1.0]


def test_negative_interval_is_clamped() -> None:
    assert RateLimiter(-3).min_interval_seconds == 0.0
