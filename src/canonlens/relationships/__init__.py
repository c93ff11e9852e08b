"""Many-to-many association records built on the entity consolidation primitives."""

from __future__ import annotations

from canonlens.relationships.builder import (
    AssociationSpec,
    Contribution,
    build_associations,
    clamp_allocation,
    resolve_endpoint,
)
from canonlens.relationships.company_geography import COMPANY_GEOGRAPHY
from canonlens.relationships.company_industry import COMPANY_INDUSTRY
from canonlens.relationships.fund_investment import FUND_INVESTMENT
from canonlens.relationships.fund_investor import FUND_INVESTOR

ASSOCIATION_TYPES: list[AssociationSpec] = [
    COMPANY_INDUSTRY,
    COMPANY_GEOGRAPHY,
    FUND_INVESTOR,
    FUND_INVESTMENT,
]

__all__ = [
    "ASSOCIATION_TYPES",
    "COMPANY_GEOGRAPHY",
    "COMPANY_INDUSTRY",
    "FUND_INVESTMENT",
    "FUND_INVESTOR",
    "AssociationSpec",
    "Contribution",
    "build_associations",
    "clamp_allocation",
    "resolve_endpoint",
]
