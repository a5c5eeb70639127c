import threading
import anyio
import pytest
from app.core.rate_limit import RateLimiter, retry_after_header


def make_limiter(clock, **kwargs) -> RateLimiter:
    options = dict(capacity=10, refill_seconds=60, idle_seconds=300, sweep_interval=60)
    options.update(kwargs)
    return RateLimiter(clock=clock, **options)


def test_burst_of_capacity_then_rejected(clock):
    limiter = make_limiter(clock)

    results = [limiter.acquire("1.2.3.4").allowed for _ in range(11)]

    assert results == [True] * 10 + [False]


def test_refill_restores_capacity_bounded(clock):
    limiter = make_limiter(clock)
    for _ in range(10):
        limiter.acquire("1.2.3.4")
    assert not limiter.acquire("1.2.3.4").allowed

    clock.advance(60)
    assert [limiter.acquire("1.2.3.4").allowed for _ in range(11)] == [True] * 10 + [False]

    # a long idle stretch still refills only up to capacity
    clock.advance(3600)
    assert [limiter.acquire("1.2.3.4").allowed for _ in range(11)] == [True] * 10 + [False]


def test_partial_refill(clock):
    limiter = make_limiter(clock)
    for _ in range(10):
        limiter.acquire("a")

    clock.advance(6)  # one token per 6 seconds
    assert limiter.acquire("a").allowed
    assert not limiter.acquire("a").allowed


def test_identities_are_independent(clock):
    limiter = make_limiter(clock, capacity=1)
    assert limiter.acquire("a").allowed
    assert not limiter.acquire("a").allowed
    assert limiter.acquire("b").allowed


def test_retry_after(clock):
    limiter = make_limiter(clock, capacity=2, refill_seconds=10)
    limiter.acquire("a")
    limiter.acquire("a")
    decision = limiter.acquire("a")

    assert not decision.allowed
    assert decision.retry_after == pytest.approx(5.0)
    assert retry_after_header(decision) == "5"


def test_sweep_removes_idle_buckets(clock):
    limiter = make_limiter(clock)
    limiter.acquire("old")
    clock.advance(200)
    limiter.acquire("recent")
    clock.advance(150)

    assert limiter.sweep() == 1
    assert "old" not in limiter._buckets
    assert "recent" in limiter._buckets
    assert len(limiter._buckets) == 1


def test_concurrent_acquire_never_over_admits():
    limiter = RateLimiter(capacity=50, refill_seconds=10_000)
    admitted = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        for _ in range(20):
            if limiter.acquire("same").allowed:
                admitted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 50


def test_sweeper_task_is_cancellable(clock):
    limiter = make_limiter(clock, sweep_interval=0.01, idle_seconds=1)
    limiter.acquire("x")
    clock.advance(10)

    async def main():
        async with anyio.create_task_group() as tg:
            tg.start_soon(limiter.run_sweeper)
            await anyio.sleep(0.1)
            tg.cancel_scope.cancel()

    anyio.run(main)
    assert len(limiter._buckets) == 0


def test_invalid_configuration():
    with pytest.raises(ValueError):
        RateLimiter(capacity=0)
