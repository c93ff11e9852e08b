"""Field consolidation: rules, reducers, FX conversion and the generic engine."""

from __future__ import annotations

from canonlens.consolidation.engine import (
    EntityGroup,
    consolidate_entities,
    consolidate_group,
    group_records,
    source_coverage,
)
from canonlens.consolidation.fx import Conversion, FxRate, FxRateTable
from canonlens.consolidation.rules import (
    REDUCERS,
    DerivationContext,
    DerivedField,
    FieldRule,
    aggregate,
    derived,
    priority,
    resolve_field,
)

__all__ = [
    "REDUCERS",
    "Conversion",
    "DerivationContext",
    "DerivedField",
    "EntityGroup",
    "FieldRule",
    "FxRate",
    "FxRateTable",
    "aggregate",
    "consolidate_entities",
    "consolidate_group",
    "derived",
    "group_records",
    "priority",
    "resolve_field",
    "source_coverage",
]
