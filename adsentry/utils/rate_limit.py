"""Outbound request throttling for the Amazon Ads API."""

from __future__ import annotations

import asyncio
import logging
import math
import os
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from fractions import Fraction

logger = logging.getLogger(__name__)

REQUESTS_PER_SECOND = float(os.environ.get("AMAZON_REQUESTS_PER_SECOND", 2))
DAILY_QUOTA = int(os.environ.get("AMAZON_DAILY_QUOTA", 50000))
RATE_LIMIT_HEADER = "x-amzn-ratelimit-limit"
RATE_DENOMINATOR_LIMIT = 60


class QuotaExhaustedError(RuntimeError):
    pass


class RateLimiter:
    """Rolling request window plus a per-UTC-day request quota.

    Counters are process-local. One instance is created per job and threaded
    through the clients that share the upstream account.
    """

    def __init__(
        self,
        *,
        rate: float = REQUESTS_PER_SECOND,
        daily_quota: int = DAILY_QUOTA,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.daily_quota = daily_quota
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._recent: deque[float] = deque()
        self._day: int | None = None
        self._used_today = 0

    @property
    def window(self) -> float:
        # Smallest whole-second window in which the rate is a whole number of requests.
        return float(self._ratio.denominator)

    @property
    def capacity(self) -> int:
        return max(1, self._ratio.numerator)

    @property
    def _ratio(self) -> Fraction:
        ratio = Fraction(self.rate).limit_denominator(RATE_DENOMINATOR_LIMIT)
        if ratio.numerator == 0:
            return Fraction(1, math.ceil(1 / self.rate))
        return ratio

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            self._roll_day(now)
            if self.daily_quota and self._used_today >= self.daily_quota:
                raise QuotaExhaustedError(
                    f"Daily request quota of {self.daily_quota} exhausted"
                )
            self._prune(now)
            while len(self._recent) >= self.capacity:
                wait = self._recent[0] + self.window - now
                if wait > 0:
                    logger.debug("Rate limiter waiting %.3fs", wait)
                    await self._sleep(wait)
                now = self._clock()
                self._prune(now)
            self._recent.append(now)
            self._used_today += 1

    def update_from_response(self, limits: Mapping[str, str]) -> None:
        """Adopt the requests-per-second ceiling advertised by the remote API."""
        raw = None
        for key, value in limits.items():
            if key.lower() == RATE_LIMIT_HEADER:
                raw = value
                break
        if raw is None:
            return
        try:
            advertised = float(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring unparsable rate limit header: %r", raw)
            return
        if advertised <= 0 or advertised == self.rate:
            return
        logger.info("Rate limit ceiling changed %.2f -> %.2f req/s", self.rate, advertised)
        self.rate = advertised

    def status(self) -> dict[str, float | int]:
        now = self._clock()
        self._prune(now)
        return {
            "requests_in_window": len(self._recent),
            "used_today": self._used_today,
            "remaining_today": max(self.daily_quota - self._used_today, 0),
            "rate": self.rate,
        }

    def _prune(self, now: float) -> None:
        while self._recent and now - self._recent[0] >= self.window:
            self._recent.popleft()

    def _roll_day(self, now: float) -> None:
        day = int(now // 86400)
        if day != self._day:
            self._day = day
            self._used_today = 0
