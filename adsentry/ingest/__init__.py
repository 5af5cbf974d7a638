"""Ingestion helpers."""

from __future__ import annotations

ENTITY_TYPES = ("campaigns", "ad_groups", "ads", "targets")


def expand_entity(entity: str) -> list[str]:
    """Entity types covered by a trigger's ``entity`` argument, parents first."""
    if entity == "all":
        return list(ENTITY_TYPES)
    if entity not in ENTITY_TYPES:
        raise ValueError(f"Unknown entity type: {entity}")
    return [entity]
