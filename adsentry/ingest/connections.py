"""Lookup of connected advertising profiles."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.engine import Engine

from adsentry.db.tables import amazon_connections
from adsentry.ingest.models import Connection

_COLUMNS = (
    amazon_connections.c.profile_id,
    amazon_connections.c.user_id,
    amazon_connections.c.marketplace_id,
    amazon_connections.c.advertising_api_endpoint,
    amazon_connections.c.status,
)


def load_connection(engine: Engine, profile_id: str) -> Connection | None:
    with engine.connect() as conn:
        row = conn.execute(
            select(*_COLUMNS).where(amazon_connections.c.profile_id == profile_id)
        ).mappings().first()
    return Connection(**row) if row else None


def active_connections(engine: Engine) -> list[Connection]:
    with engine.connect() as conn:
        rows = conn.execute(
            select(*_COLUMNS)
            .where(amazon_connections.c.status == "active")
            .order_by(amazon_connections.c.profile_id)
        ).mappings().all()
    return [Connection(**row) for row in rows]
