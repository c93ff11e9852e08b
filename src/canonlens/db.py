"""PostgreSQL access for the snapshot writers (psycopg3)."""

import psycopg
from psycopg.rows import dict_row

from canonlens.config import Settings

SNAPSHOT_SCHEMA = """
    CREATE TABLE IF NOT EXISTS canonical_entities_snapshot (
        canonical_id text NOT NULL,
        run_date date NOT NULL,
        entity_type text NOT NULL,
        fields jsonb NOT NULL,
        completeness_score numeric(5, 2) NOT NULL,
        quality_rating text NOT NULL,
        resolution_confidence text NOT NULL,
        source_systems text,
        source_coverage text,
        is_placeholder boolean NOT NULL DEFAULT false,
        data_quality_flags jsonb NOT NULL DEFAULT '[]'::jsonb,
        content_hash char(64) NOT NULL,
        processed_at timestamptz,
        PRIMARY KEY (canonical_id, run_date)
    );
    CREATE TABLE IF NOT EXISTS canonical_associations_snapshot (
        relationship_id text NOT NULL,
        run_date date NOT NULL,
        association_type text NOT NULL,
        entity_id text NOT NULL,
        target_id text NOT NULL,
        allocation_percentage numeric(7, 4) NOT NULL
            CHECK (allocation_percentage BETWEEN 0 AND 100),
        is_primary boolean NOT NULL DEFAULT false,
        categories jsonb NOT NULL DEFAULT '{}'::jsonb,
        fields jsonb NOT NULL DEFAULT '{}'::jsonb,
        source_systems text,
        source_record_count integer NOT NULL DEFAULT 0,
        data_quality_flags jsonb NOT NULL DEFAULT '[]'::jsonb,
        content_hash char(64) NOT NULL,
        PRIMARY KEY (relationship_id, run_date)
    );
"""


def get_connection(settings: Settings | None = None) -> psycopg.Connection:
    """Open a synchronous connection to PostgreSQL with dict row factory."""
    if settings is None:
        from canonlens.config import get_settings
        settings = get_settings()

    return psycopg.connect(settings.database_url, row_factory=dict_row)


def ensure_schema(conn: psycopg.Connection) -> None:
    """Create the snapshot tables if they do not exist yet."""
    with conn.cursor() as cur:
        cur.execute(SNAPSHOT_SCHEMA)


def execute_query(conn: psycopg.Connection, query: str, params: tuple = ()) -> list[dict]:
    """Execute a query and return all rows as dicts."""
    with conn.cursor() as cur:
        cur.execute(query, params)
        if cur.description:
            return cur.fetchall()
        return []


def execute_many(conn: psycopg.Connection, query: str, params_list: list[tuple]) -> int:
    """Run *query* once per params tuple. An empty batch is a no-op."""
    if not params_list:
        return 0
    with conn.cursor() as cur:
        cur.executemany(query, params_list)
        return len(params_list)
