import pytest

from adsentry.utils.rate_limit import QuotaExhaustedError, RateLimiter


class ManualClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_limiter(rate=2, daily_quota=100):
    clock = ManualClock()
    sleeps = []

    async def sleep(delay):
        sleeps.append(delay)
        clock.now += delay

    return RateLimiter(rate=rate, daily_quota=daily_quota, clock=clock, sleep=sleep), clock, sleeps


@pytest.mark.asyncio
async def test_acquire_waits_when_window_is_full():
    limiter, clock, sleeps = make_limiter(rate=2)
    await limiter.acquire()
    await limiter.acquire()
    assert sleeps == []
    await limiter.acquire()
    assert sleeps == [pytest.approx(1.0)]


@pytest.mark.asyncio
async def test_quota_exhaustion_raises():
    limiter, clock, _ = make_limiter(rate=100, daily_quota=2)
    await limiter.acquire()
    await limiter.acquire()
    with pytest.raises(QuotaExhaustedError):
        await limiter.acquire()


@pytest.mark.asyncio
async def test_quota_resets_on_new_day():
    limiter, clock, _ = make_limiter(rate=100, daily_quota=1)
    await limiter.acquire()
    clock.now += 86_400
    await limiter.acquire()
    assert limiter.status()["used_today"] == 1


def test_update_from_response_adopts_advertised_rate():
    limiter, _, _ = make_limiter(rate=2)
    limiter.update_from_response({"X-Amzn-RateLimit-Limit": "5"})
    assert limiter.rate == 5.0
    limiter.update_from_response({"x-amzn-ratelimit-limit": "nonsense"})
    assert limiter.rate == 5.0
    limiter.update_from_response({"content-type": "application/json"})
    assert limiter.rate == 5.0


@pytest.mark.asyncio
async def test_fractional_rate_uses_full_ceiling():
    limiter, clock, sleeps = make_limiter(rate=2.5)
    assert (limiter.capacity, limiter.window) == (5, 2.0)
    for _ in range(5):
        await limiter.acquire()
    assert sleeps == []
    await limiter.acquire()
    assert sleeps == [pytest.approx(2.0)]


def test_very_slow_rate_still_spaces_requests():
    limiter, _, _ = make_limiter(rate=0.001)
    assert (limiter.capacity, limiter.window) == (1, 1000.0)
