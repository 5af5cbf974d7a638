"""Retry policy for outbound HTTP calls."""

from __future__ import annotations

import asyncio
import logging
import os
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY = float(os.environ.get("AMAZON_RETRY_BASE_SECONDS", 1.0))
JITTER = 0.25
RETRY_EXCEPTIONS = (httpx.TransportError,)


def backoff_delay(
    attempt: int,
    *,
    base: float = BASE_DELAY,
    rand: Callable[[], float] = random.random,
) -> float:
    """``base * 2**attempt`` with +/-25% jitter."""
    delay = base * 2**attempt
    return delay * (1 + JITTER * (2 * rand() - 1))


def parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def retry_delay(
    attempt: int,
    status_code: int | None,
    retry_after: float | None = None,
    *,
    max_retries: int = MAX_RETRIES,
    base: float = BASE_DELAY,
    rand: Callable[[], float] = random.random,
) -> float | None:
    """Decide whether the failed ``attempt`` (zero-based) is retried and after how long.

    ``status_code`` is ``None`` for transport failures and timeouts. Returns
    the delay in seconds, or ``None`` when the failure is terminal.
    """
    if attempt >= max_retries:
        return None
    if status_code is None or status_code >= 500:
        return backoff_delay(attempt, base=base, rand=rand)
    if status_code == 429:
        if retry_after is not None:
            return retry_after
        return backoff_delay(attempt, base=base, rand=rand)
    return None


async def send_with_retry(
    send: Callable[[int], Awaitable[httpx.Response]],
    *,
    label: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    max_retries: int = MAX_RETRIES,
    base: float = BASE_DELAY,
    rand: Callable[[], float] = random.random,
) -> httpx.Response:
    """Call ``send(attempt)`` until it succeeds or the policy gives up.

    The last response is returned even when it is a failure, so callers can
    surface the status code. A transport error that exhausts the policy is
    re-raised.
    """
    attempt = 0
    while True:
        try:
            response = await send(attempt)
        except RETRY_EXCEPTIONS as exc:
            delay = retry_delay(attempt, None, max_retries=max_retries, base=base, rand=rand)
            if delay is None:
                raise
            logger.warning(
                "%s failed on attempt %s/%s (%s); retrying in %.2fs",
                label, attempt + 1, max_retries + 1, exc.__class__.__name__, delay,
            )
        else:
            if response.status_code < 400:
                return response
            delay = retry_delay(
                attempt,
                response.status_code,
                parse_retry_after(response.headers.get("Retry-After")),
                max_retries=max_retries,
                base=base,
                rand=rand,
            )
            if delay is None:
                return response
            logger.warning(
                "%s returned %s on attempt %s/%s; retrying in %.2fs",
                label, response.status_code, attempt + 1, max_retries + 1, delay,
            )
        await sleep(delay)
        attempt += 1
