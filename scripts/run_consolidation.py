#!/usr/bin/env python3
"""CLI script to consolidate a source snapshot into canonical entities and associations."""

from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path

import structlog
import typer

from canonlens.config import get_settings
from canonlens.db import ensure_schema, get_connection
from canonlens.pipeline import run_consolidation
from canonlens.snapshot import load_snapshot
from canonlens.storage import count_unchanged, previous_hashes, write_snapshot

logger = structlog.get_logger(__name__)
app = typer.Typer()


@app.command()
def main(
    snapshot_dir: Path | None = typer.Option(
        None, "--snapshot-dir", help="Directory holding manifest.json. Defaults to settings."
    ),
    as_of: str | None = typer.Option(
        None, "--as-of", help="As-of date (YYYY-MM-DD). Defaults to today."
    ),
    entity_type: list[str] | None = typer.Option(
        None, "--entity-type", help="Restrict to an entity type (repeatable)"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Consolidate and log the summary without writing"
    ),
) -> None:
    """Consolidate one snapshot and write the canonical tables for its run date."""
    settings = get_settings()
    run_date = date.fromisoformat(as_of) if as_of else date.today()
    source_dir = snapshot_dir or Path(settings.snapshot_dir)

    snapshot = load_snapshot(source_dir)
    result = run_consolidation(
        snapshot,
        as_of=run_date,
        entity_types=entity_type or None,
        reporting_currency=settings.reporting_currency,
        processed_at=datetime.now(timezone.utc),
    )

    if dry_run:
        logger.info("dry_run_complete", run_date=run_date.isoformat(), **result.stats)
        return

    conn = get_connection(settings)
    try:
        ensure_schema(conn)
        previous = previous_hashes(conn, run_date)
        written = write_snapshot(
            conn,
            result.entities,
            result.associations,
            run_date,
            batch_size=settings.write_batch_size,
        )
        conn.commit()
        logger.info(
            "consolidation_written",
            run_date=run_date.isoformat(),
            unchanged=count_unchanged(result.entities, previous),
            **written,
        )
    finally:
        conn.close()


if __name__ == "__main__":
    app()
