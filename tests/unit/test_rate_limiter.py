import threading

from edge_gateway.ratelimit.limiter import SlidingWindowRateLimiter


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_ceiling_then_rejection() -> None:
    limiter = SlidingWindowRateLimiter(ceiling=10, window_seconds=60, clock=_Clock())
    assert all(limiter.admit("client-a") for _ in range(10))
    assert not limiter.admit("client-a")
    assert limiter.remaining("client-a") == 0


def test_window_elapses() -> None:
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(ceiling=10, window_seconds=60, clock=clock)
    for _ in range(10):
        limiter.admit("client-a")
    assert limiter.reset_time("client-a") == 1_060.0

    clock.now += 61
    assert limiter.admit("client-a")
    assert limiter.remaining("client-a") == 9


def test_identifiers_are_independent() -> None:
    limiter = SlidingWindowRateLimiter(ceiling=1, window_seconds=60, clock=_Clock())
    assert limiter.admit("a")
    assert limiter.admit("b")
    assert not limiter.admit("a")


def test_unknown_identifier_summary() -> None:
    limiter = SlidingWindowRateLimiter(ceiling=5, window_seconds=30, clock=_Clock())
    assert limiter.reset_time("nobody") == 0.0
    assert limiter.summary("nobody") == {
        "identifier": "nobody",
        "ceiling": 5,
        "window_seconds": 30,
        "remaining": 5,
        "reset_at": 0.0,
    }


def test_concurrent_admissions_respect_ceiling() -> None:
    limiter = SlidingWindowRateLimiter(ceiling=25, window_seconds=60, clock=_Clock())
    admitted: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(10):
            result = limiter.admit("shared")
            with lock:
                admitted.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert admitted.count(True) == 25
