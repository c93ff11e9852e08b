"""Cross-reference resolution.

Normalises the externally maintained canonical-id mapping: confidence labels
are collapsed to a fixed scale, canonical ids are format-checked, and every
entry is graded for how far it can be trusted. Entries that fail validation
are kept and graded ``LOW_QUALITY`` so they stay visible for manual review.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

import structlog

from canonlens.records import CrossReferenceEntry, date_sort_key, is_populated

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Confidence normalisation
# ---------------------------------------------------------------------------

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"
UNKNOWN = "UNKNOWN"

CONFIDENCE_SYNONYMS: dict[str, str] = {
    "HIGH": HIGH,
    "STRONG": HIGH,
    "CONFIDENT": HIGH,
    "MEDIUM": MEDIUM,
    "MODERATE": MEDIUM,
    "FAIR": MEDIUM,
    "LOW": LOW,
    "WEAK": LOW,
    "UNCERTAIN": LOW,
}

CONFIDENCE_RANK: dict[str, int] = {HIGH: 3, MEDIUM: 2, LOW: 1, UNKNOWN: 0}


def normalize_confidence(label: str | None) -> str:
    """Map a free-text confidence label onto HIGH / MEDIUM / LOW / UNKNOWN."""
    if label is None:
        return UNKNOWN
    return CONFIDENCE_SYNONYMS.get(str(label).strip().upper(), UNKNOWN)


# ---------------------------------------------------------------------------
# Canonical id validation
# ---------------------------------------------------------------------------

VALID_FORMAT = "VALID_FORMAT"
INVALID_FORMAT = "INVALID_FORMAT"
MISSING = "MISSING"

CANONICAL_ID_PREFIXES: dict[str, str] = {
    "company": "COMP",
    "fund": "FUND",
    "investor": "INV",
    "counterparty": "CPTY",
}

_CANONICAL_ID_PATTERNS: dict[str, re.Pattern[str]] = {
    entity_type: re.compile(rf"^{prefix}-CANON-[A-Za-z0-9_-]+$")
    for entity_type, prefix in CANONICAL_ID_PREFIXES.items()
}


def validate_canonical_id(entity_type: str, canonical_id: str | None) -> str:
    """Classify a canonical id as VALID_FORMAT, INVALID_FORMAT or MISSING."""
    if not is_populated(canonical_id):
        return MISSING
    pattern = _CANONICAL_ID_PATTERNS.get(entity_type)
    if pattern is None:
        raise KeyError(f"Unknown entity type: {entity_type}")
    return VALID_FORMAT if pattern.match(str(canonical_id).strip()) else INVALID_FORMAT


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

HIGH_QUALITY = "HIGH_QUALITY"
MEDIUM_QUALITY = "MEDIUM_QUALITY"
LOW_QUALITY = "LOW_QUALITY"


def is_recommended(validation: str, confidence: str, source_systems_count: int) -> bool:
    """Whether a mapping is trustworthy enough to drive resolution unattended."""
    return validation == VALID_FORMAT and (
        confidence in (HIGH, MEDIUM) or source_systems_count >= 2
    )


def rate_reference(validation: str, confidence: str, source_systems_count: int) -> str:
    if validation == VALID_FORMAT and confidence == HIGH and source_systems_count >= 2:
        return HIGH_QUALITY
    if validation == VALID_FORMAT and source_systems_count >= 1:
        return MEDIUM_QUALITY
    return LOW_QUALITY


@dataclass(frozen=True)
class ResolvedReference:
    entity_type: str
    canonical_id: str | None
    source_keys: dict[str, str]
    resolution_confidence: str
    source_systems_count: int
    canonical_id_validation: str
    recommended_for_resolution: bool
    data_quality_rating: str
    last_modified: date | datetime | None = None

    @property
    def is_valid(self) -> bool:
        return self.canonical_id_validation == VALID_FORMAT


def resolve_entry(entry: CrossReferenceEntry) -> ResolvedReference:
    """Normalise and grade a single cross-reference entry."""
    keys = entry.linked_keys()
    confidence = normalize_confidence(entry.resolution_confidence)
    validation = validate_canonical_id(entry.entity_type, entry.canonical_id)
    canonical_id = str(entry.canonical_id).strip() if validation != MISSING else None
    return ResolvedReference(
        entity_type=entry.entity_type,
        canonical_id=canonical_id,
        source_keys=keys,
        resolution_confidence=confidence,
        source_systems_count=len(keys),
        canonical_id_validation=validation,
        recommended_for_resolution=is_recommended(validation, confidence, len(keys)),
        data_quality_rating=rate_reference(validation, confidence, len(keys)),
        last_modified=entry.last_modified,
    )


def _recency_key(ref: ResolvedReference) -> tuple:
    return (date_sort_key(ref.last_modified), tuple(sorted(ref.source_keys.items())))


def resolve_cross_references(
    entries: Iterable[CrossReferenceEntry],
) -> list[ResolvedReference]:
    """Resolve a batch of entries into one reference per canonical id.

    When the same canonical id appears more than once, the most recently
    modified entry wins; equal timestamps fall back to the greatest key set.
    Entries with no canonical id cannot collide and are all kept.
    """
    by_id: dict[tuple[str, str], ResolvedReference] = {}
    missing: list[ResolvedReference] = []

    for entry in entries:
        ref = resolve_entry(entry)
        if ref.canonical_id is None:
            missing.append(ref)
            continue
        ident = (ref.entity_type, ref.canonical_id)
        current = by_id.get(ident)
        if current is None or _recency_key(ref) > _recency_key(current):
            by_id[ident] = ref

    resolved = [by_id[k] for k in sorted(by_id)]
    resolved.extend(
        sorted(missing, key=lambda r: (r.entity_type, tuple(sorted(r.source_keys.items()))))
    )

    logger.info(
        "xref_resolved",
        references=len(resolved),
        invalid=sum(1 for r in resolved if not r.is_valid),
        unlinked=sum(1 for r in resolved if r.source_systems_count == 0),
    )
    return resolved


# ---------------------------------------------------------------------------
# Source key index
# ---------------------------------------------------------------------------

KeyIndex = dict[tuple[str, str, str], ResolvedReference]


def _stronger_claim(a: ResolvedReference, b: ResolvedReference) -> ResolvedReference:
    """Higher confidence, then recency; the smaller id breaks ties."""
    key_a = (CONFIDENCE_RANK[a.resolution_confidence], date_sort_key(a.last_modified))
    key_b = (CONFIDENCE_RANK[b.resolution_confidence], date_sort_key(b.last_modified))
    if key_a != key_b:
        return a if key_a > key_b else b
    return a if (a.canonical_id or "") <= (b.canonical_id or "") else b


def build_key_index(references: Iterable[ResolvedReference]) -> KeyIndex:
    """Index ``(entity_type, source_system, source_key)`` to its reference.

    Only references recommended for resolution are indexed; the rest stay
    in the resolver output but never become a join target, so their source
    rows fall back to placeholder ids. A source key claimed by several
    canonical ids goes to the strongest claim.
    """
    index: KeyIndex = {}
    skipped = 0
    for ref in references:
        if not ref.recommended_for_resolution:
            skipped += 1
            continue
        for system, key in ref.source_keys.items():
            slot = (ref.entity_type, system, key)
            current = index.get(slot)
            if current is None:
                index[slot] = ref
                continue
            winner = _stronger_claim(current, ref)
            loser = ref if winner is current else current
            logger.warning(
                "xref_key_conflict",
                entity_type=ref.entity_type,
                source_system=system,
                source_key=key,
                kept=winner.canonical_id,
                discarded=loser.canonical_id,
            )
            index[slot] = winner
    logger.info("xref_indexed", keys=len(index), not_recommended=skipped)
    return index
