"""Entity sync jobs."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from sqlalchemy.engine import Engine

from adsentry.db.session import create_engine_from_env
from adsentry.ingest import expand_entity
from adsentry.ingest.amazon_client import AmazonAdsClient, resolve_base_url
from adsentry.ingest.connections import active_connections, load_connection
from adsentry.ingest.sync import SYNC_MODES, SyncOrchestrator
from adsentry.ingest.tokens import TokenManager
from adsentry.utils.env import load_env_file, require_env
from adsentry.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

INTER_PROFILE_DELAY = float(os.environ.get("INTER_PROFILE_DELAY_SECONDS", 1.0))


class UnknownProfileError(LookupError):
    pass


async def run_entity_sync(
    profile_id: str,
    entity: str = "all",
    mode: str = "incremental",
    *,
    engine: Engine | None = None,
    session: httpx.AsyncClient | None = None,
    rate_limiter: RateLimiter | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict[str, Any]:
    """Sync one profile and return the JSON summary served by ``/sync``."""
    if mode not in SYNC_MODES:
        raise ValueError(f"Unknown sync mode: {mode}")
    expand_entity(entity)
    load_env_file()
    client_id = require_env("AMAZON_CLIENT_ID")
    client_secret = require_env("AMAZON_CLIENT_SECRET")
    engine = engine or create_engine_from_env()

    loop = asyncio.get_running_loop()
    connection = await loop.run_in_executor(None, load_connection, engine, profile_id)
    if connection is None:
        raise UnknownProfileError(f"No Amazon connection for profile {profile_id}")

    owns_session = session is None
    session = session or httpx.AsyncClient(timeout=30.0)
    try:
        tokens = TokenManager(
            engine, client_id=client_id, client_secret=client_secret, session=session, sleep=sleep
        )
        access_token = await tokens.ensure_access_token(profile_id)
        client = AmazonAdsClient(
            profile_id=profile_id,
            client_id=client_id,
            access_token=access_token,
            base_url=resolve_base_url(
                endpoint=connection.advertising_api_endpoint, marketplace_id=connection.marketplace_id
            ),
            session=session,
            rate_limiter=rate_limiter,
            sleep=sleep,
        )
        summary = await SyncOrchestrator(engine, client).sync_profile(entity, mode)
    finally:
        if owns_session:
            await session.aclose()
    return summary.to_dict()


async def run_scheduled_sync(
    mode: str = "incremental",
    *,
    engine: Engine | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[dict[str, Any]]:
    """Sync every active profile in turn; one profile failing does not stop the rest."""
    load_env_file()
    require_env("AMAZON_CLIENT_ID")
    require_env("AMAZON_CLIENT_SECRET")
    engine = engine or create_engine_from_env()
    # Shared so profiles on the same account draw from one daily quota.
    rate_limiter = RateLimiter(sleep=sleep)
    results: list[dict[str, Any]] = []
    connections = await asyncio.get_running_loop().run_in_executor(None, active_connections, engine)
    for index, connection in enumerate(connections):
        if index:
            await sleep(INTER_PROFILE_DELAY)
        try:
            results.append(
                await run_entity_sync(
                    connection.profile_id, "all", mode, engine=engine, rate_limiter=rate_limiter, sleep=sleep
                )
            )
        except Exception as exc:
            logger.exception("Scheduled %s sync failed for profile %s", mode, connection.profile_id)
            results.append({"profileId": connection.profile_id, "success": False, "errors": [str(exc)]})
    logger.info("Scheduled %s sync finished for %s profiles", mode, len(connections))
    return results


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_scheduled_sync())
