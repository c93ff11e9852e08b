"""Load a run snapshot (source records, cross-reference, FX rates) from CSV files.

A snapshot directory holds a ``manifest.json`` describing its files::

    {
      "sources": [
        {"entity_type": "company", "source_system": "CRM_VENDOR",
         "record_kind": "profile", "path": "crm_companies.csv",
         "key_column": "company_id", "record_id_column": "company_id",
         "last_modified_column": "last_modified_date",
         "date_columns": ["created_at"], "columns": {"company_name": "name"}}
      ],
      "xrefs": [
        {"entity_type": "company", "path": "xref_companies.csv",
         "id_column": "canonical_company_id",
         "key_columns": {"CRM_VENDOR": "crm_company_id"}}
      ],
      "fx_rates": "fx_rates.csv"
    }

Cleaning and casting happen upstream; this loader only maps columns, parses
the declared date columns and turns empty cells into ``None``.
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd
import structlog

from canonlens.consolidation.fx import FxRate
from canonlens.pipeline import Snapshot
from canonlens.records import CrossReferenceEntry, SourceRecord

logger = structlog.get_logger(__name__)

MANIFEST_NAME = "manifest.json"
FX_COLUMNS = ("from_currency", "to_currency", "rate", "as_of_date")


def _read_csv(path: Path, text_columns: list[str], date_columns: list[str]) -> pd.DataFrame:
    """Read *path*, keeping key columns as text and parsing date columns."""
    df = pd.read_csv(path, dtype={c: str for c in text_columns})
    df.columns = [c.strip() for c in df.columns]
    for col in date_columns:
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], errors="coerce").dt.date
    return df


def _rows(df: pd.DataFrame) -> list[dict[str, Any]]:
    """Row dicts with NaN/NaT replaced by ``None`` and numpy scalars unboxed."""
    clean = df.astype(object).where(df.notna(), None)
    return clean.to_dict(orient="records")


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_date(value: Any) -> date | None:
    return value if isinstance(value, date) else None


def load_source_records(snapshot_dir: Path, source: dict[str, Any]) -> list[SourceRecord]:
    """Load one source file described by a manifest entry."""
    key_column = source.get("key_column")
    record_id_column = source.get("record_id_column") or key_column
    modified_column = source.get("last_modified_column")
    date_columns = list(source.get("date_columns", []))
    if modified_column:
        date_columns.append(modified_column)
    text_columns = [c for c in (key_column, record_id_column) if c]

    df = _read_csv(snapshot_dir / source["path"], text_columns, date_columns)
    columns = source.get("columns", {})

    records = []
    for row in _rows(df):
        fields = {columns.get(name, name): value for name, value in row.items()}
        records.append(
            SourceRecord(
                entity_type=source["entity_type"],
                source_system=source["source_system"],
                source_key=_text(row.get(key_column)) if key_column else None,
                fields=fields,
                last_modified=_as_date(row.get(modified_column)) if modified_column else None,
                record_kind=source.get("record_kind", "profile"),
                record_id=_text(row.get(record_id_column)) if record_id_column else None,
            )
        )
    return records


def load_cross_reference(snapshot_dir: Path, xref: dict[str, Any]) -> list[CrossReferenceEntry]:
    id_column = xref["id_column"]
    key_columns: dict[str, str] = xref["key_columns"]
    confidence_column = xref.get("confidence_column", "resolution_confidence")
    modified_column = xref.get("last_modified_column", "last_modified_date")

    df = _read_csv(
        snapshot_dir / xref["path"],
        [id_column, *key_columns.values()],
        [modified_column],
    )
    entries = []
    for row in _rows(df):
        entries.append(
            CrossReferenceEntry(
                entity_type=xref["entity_type"],
                canonical_id=_text(row.get(id_column)),
                source_keys={system: _text(row.get(col)) for system, col in key_columns.items()},
                resolution_confidence=_text(row.get(confidence_column)),
                last_modified=_as_date(row.get(modified_column)),
            )
        )
    return entries


def load_fx_rates(path: Path) -> list[FxRate]:
    if not path.exists():
        return []
    df = _read_csv(path, ["from_currency", "to_currency"], ["as_of_date"])
    missing = [c for c in FX_COLUMNS if c not in df.columns]
    if missing:
        msg = f"{path} is missing columns: {missing}"
        raise ValueError(msg)

    rates = []
    for row in _rows(df):
        if row["as_of_date"] is None or row["rate"] is None:
            continue
        rates.append(
            FxRate(
                from_currency=str(row["from_currency"]).strip().upper(),
                to_currency=str(row["to_currency"]).strip().upper(),
                rate=float(row["rate"]),
                as_of_date=row["as_of_date"],
            )
        )
    return rates


def load_snapshot(snapshot_dir: Path | str) -> Snapshot:
    """Load every file listed in ``<snapshot_dir>/manifest.json``.

    Raises:
        FileNotFoundError: If the manifest or a listed file is missing.
    """
    snapshot_dir = Path(snapshot_dir)
    manifest = json.loads((snapshot_dir / MANIFEST_NAME).read_text())

    records: list[SourceRecord] = []
    for source in manifest.get("sources", []):
        records.extend(load_source_records(snapshot_dir, source))

    xrefs: list[CrossReferenceEntry] = []
    for xref in manifest.get("xrefs", []):
        xrefs.extend(load_cross_reference(snapshot_dir, xref))

    fx_rates = load_fx_rates(snapshot_dir / manifest.get("fx_rates", "fx_rates.csv"))

    logger.info(
        "snapshot_loaded",
        snapshot_dir=str(snapshot_dir),
        records=len(records),
        xrefs=len(xrefs),
        fx_rates=len(fx_rates),
    )
    return Snapshot(records=records, xrefs=xrefs, fx_rates=fx_rates)
