"""Cross-reference resolution and placeholder id derivation."""

from __future__ import annotations

from canonlens.resolution.placeholders import (
    counterparty_id,
    name_key,
    placeholder_for_record,
    placeholder_id,
)
from canonlens.resolution.xref import (
    ResolvedReference,
    build_key_index,
    is_recommended,
    normalize_confidence,
    rate_reference,
    resolve_cross_references,
    resolve_entry,
    validate_canonical_id,
)

__all__ = [
    "ResolvedReference",
    "build_key_index",
    "counterparty_id",
    "is_recommended",
    "name_key",
    "normalize_confidence",
    "placeholder_for_record",
    "placeholder_id",
    "rate_reference",
    "resolve_cross_references",
    "resolve_entry",
    "validate_canonical_id",
]
