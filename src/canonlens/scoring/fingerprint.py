"""Stable content fingerprints for change detection.

``canonical_json`` is the plain serialised form also stored in JSONB columns.
``content_hash`` digests a typed variant in which dates, timestamps and
decimals carry a type tag, so ``date(2024, 1, 1)`` and the string
``"2024-01-01"`` never share a fingerprint.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

VOLATILE_FIELDS = frozenset({"processed_at"})


def _encode(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    if hasattr(value, "item"):
        # numpy scalars
        return value.item()
    raise TypeError(f"Cannot fingerprint value of type {type(value).__name__}")


def _encode_typed(value: Any) -> Any:
    # datetime first: it is a date subclass
    if isinstance(value, datetime):
        return {"$datetime": value.isoformat()}
    if isinstance(value, date):
        return {"$date": value.isoformat()}
    if isinstance(value, Decimal):
        return {"$decimal": str(value.normalize())}
    return _encode(value)


def _payload(fields: Mapping[str, Any], exclude: Iterable[str]) -> dict[str, Any]:
    skip = frozenset(exclude)
    return {k: v for k, v in fields.items() if k not in skip}


def canonical_json(
    fields: Mapping[str, Any],
    exclude: Iterable[str] = VOLATILE_FIELDS,
) -> str:
    """Serialise *fields* with sorted keys so key order never affects output."""
    return json.dumps(
        _payload(fields, exclude), sort_keys=True, separators=(",", ":"), default=_encode
    )


def content_hash(
    fields: Mapping[str, Any],
    exclude: Iterable[str] = VOLATILE_FIELDS,
) -> str:
    """SHA-256 hex digest of the type-tagged canonical JSON form of *fields*."""
    text = json.dumps(
        _payload(fields, exclude), sort_keys=True, separators=(",", ":"), default=_encode_typed
    )
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
