"""Deterministic ids for records the cross-reference mapping does not cover."""

from __future__ import annotations

import re

from unidecode import unidecode

from canonlens.records import SourceRecord, is_populated
from canonlens.resolution.xref import CANONICAL_ID_PREFIXES


def name_key(name: str | None) -> str:
    """Upper-case ASCII alphanumeric form of a name (``"Müller & Co."`` -> ``MULLERCO``)."""
    if not is_populated(name):
        return ""
    text = unidecode(str(name)).upper()
    return re.sub(r"[^A-Z0-9]", "", text)


def placeholder_id(entity_type: str, source_key: str | None) -> str | None:
    """``<PREFIX>-UNKNOWN-<source_key>``, or ``None`` when there is no key."""
    if not is_populated(source_key):
        return None
    prefix = CANONICAL_ID_PREFIXES[entity_type]
    return f"{prefix}-UNKNOWN-{str(source_key).strip()}"


def placeholder_for_record(record: SourceRecord) -> str | None:
    return placeholder_id(record.entity_type, record.source_key)


def counterparty_id(record: SourceRecord, name_field: str = "name") -> str | None:
    """Counterparties have no cross-reference; they are keyed by normalised name."""
    key = name_key(record.get(name_field))
    if not key:
        return None
    return f"{CANONICAL_ID_PREFIXES['counterparty']}-{key}"
