"""Access-token refresh for connected profiles."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

import httpx
from sqlalchemy import select, update
from sqlalchemy.engine import Engine

from adsentry.db.tables import amazon_connections, amazon_tokens
from adsentry.utils.dates import ensure_utc, utc_now
from adsentry.utils.retry import RETRY_EXCEPTIONS, send_with_retry

logger = logging.getLogger(__name__)

TOKEN_URL = "https://api.amazon.com/auth/o2/token"
REFRESH_MARGIN = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600


class TokenRefreshError(RuntimeError):
    pass


class TokenManager:
    def __init__(
        self,
        engine: Engine,
        *,
        client_id: str,
        client_secret: str,
        session: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.engine = engine
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or httpx.AsyncClient(timeout=30.0)
        self._sleep = sleep
        self._clock = clock
        self._rand = rand

    async def close(self) -> None:
        await self.session.aclose()

    async def ensure_access_token(self, profile_id: str) -> str:
        """Return a usable access token, refreshing it when it expires within five minutes."""
        loop = asyncio.get_running_loop()
        row = await loop.run_in_executor(None, self._load_token, profile_id)
        if row is None:
            raise TokenRefreshError(f"No stored token for profile {profile_id}")
        expires_at = ensure_utc(row["expires_at"])
        if row["access_token"] and expires_at and expires_at - self._clock() > REFRESH_MARGIN:
            return row["access_token"]
        logger.info("Refreshing access token for profile %s (expires_at=%s)", profile_id, expires_at)
        return await self._refresh(profile_id, row["refresh_token"])

    async def _refresh(self, profile_id: str, refresh_token: str) -> str:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        async def send(attempt: int) -> httpx.Response:
            return await self.session.post(TOKEN_URL, data=form)

        loop = asyncio.get_running_loop()
        try:
            response = await send_with_retry(
                send, label="POST token refresh", sleep=self._sleep, rand=self._rand
            )
        except RETRY_EXCEPTIONS as exc:
            raise TokenRefreshError(f"Token endpoint unreachable: {exc}") from exc
        if response.status_code >= 400:
            logger.error(
                "Token refresh failed for profile %s: %s %s",
                profile_id, response.status_code, response.text,
            )
            await loop.run_in_executor(None, self._mark_expired, profile_id)
            raise TokenRefreshError(
                f"Token refresh failed with HTTP {response.status_code}; reconnect the account"
            )
        try:
            payload = response.json()
            access_token = payload["access_token"]
        except (ValueError, KeyError) as exc:
            raise TokenRefreshError("Token endpoint returned no access_token") from exc
        expires_at = self._clock() + timedelta(seconds=int(payload.get("expires_in") or DEFAULT_EXPIRES_IN))
        await loop.run_in_executor(
            None,
            self._store_token,
            profile_id,
            access_token,
            payload.get("refresh_token") or refresh_token,
            expires_at,
        )
        return access_token

    def _load_token(self, profile_id: str):
        with self.engine.connect() as conn:
            return conn.execute(
                select(amazon_tokens.c.access_token, amazon_tokens.c.refresh_token, amazon_tokens.c.expires_at)
                .where(amazon_tokens.c.profile_id == profile_id)
            ).mappings().first()

    def _store_token(self, profile_id: str, access_token: str, refresh_token: str, expires_at: datetime) -> None:
        now = self._clock()
        with self.engine.begin() as conn:
            conn.execute(
                update(amazon_tokens)
                .where(amazon_tokens.c.profile_id == profile_id)
                .values(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at, updated_at=now)
            )
            conn.execute(
                update(amazon_connections)
                .where(amazon_connections.c.profile_id == profile_id)
                .values(token_expires_at=expires_at, status="active", updated_at=now)
            )
        logger.info("Stored refreshed token for profile %s (expires_at=%s)", profile_id, expires_at)

    def _mark_expired(self, profile_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(amazon_connections)
                .where(amazon_connections.c.profile_id == profile_id)
                .values(status="expired", updated_at=self._clock())
            )
