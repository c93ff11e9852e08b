"""Registered entity-type strategies.

The registry is the single source of truth for how each entity type is
consolidated. The engine never branches on entity type; it looks the
strategy up here.
"""

from __future__ import annotations

from canonlens.registry.base import EntityTypeSpec, classified
from canonlens.registry.company import COMPANY
from canonlens.registry.counterparty import COUNTERPARTY
from canonlens.registry.fund import FUND
from canonlens.registry.investor import INVESTOR

ENTITY_TYPES: list[EntityTypeSpec] = [COMPANY, FUND, INVESTOR, COUNTERPARTY]

_BY_NAME: dict[str, EntityTypeSpec] = {s.entity_type: s for s in ENTITY_TYPES}


def get_entity_type(name: str) -> EntityTypeSpec:
    """Look up an entity type by name. Raises KeyError if not found."""
    return _BY_NAME[name]


def entity_type_names() -> list[str]:
    return [s.entity_type for s in ENTITY_TYPES]


__all__ = [
    "COMPANY",
    "COUNTERPARTY",
    "ENTITY_TYPES",
    "FUND",
    "INVESTOR",
    "EntityTypeSpec",
    "classified",
    "entity_type_names",
    "get_entity_type",
]
