"""Apply the PostgreSQL schema and report which tables it created."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import psycopg

from creaturehunt.backend.config import configure_logging, load_settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")

_TABLE_PATTERN = re.compile(r"CREATE TABLE IF NOT EXISTS\s+(\w+)", re.IGNORECASE)

_EXISTING_TABLES_SQL = """
SELECT table_name FROM information_schema.tables
WHERE table_schema = current_schema() AND table_name = ANY(%s)
"""


def schema_tables(schema_sql: str) -> list[str]:
    return _TABLE_PATTERN.findall(schema_sql)


def apply_schema(database_url: str, schema_sql: str) -> list[str]:
    """Run the schema and return the tables that did not exist beforehand."""
    declared = schema_tables(schema_sql)
    with psycopg.connect(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(_EXISTING_TABLES_SQL, (declared,))
            existing = {row[0] for row in cur.fetchall()}
            cur.execute(schema_sql)
        conn.commit()
    return [table for table in declared if table not in existing]


def main() -> list[str]:
    settings = load_settings()
    if not settings.database_url:
        raise RuntimeError("CREATUREHUNT_DATABASE_URL is required for migration")
    configure_logging(settings.log_level)

    created = apply_schema(settings.database_url, SCHEMA_PATH.read_text(encoding="utf-8"))
    if created:
        logger.info("Created tables: %s", ", ".join(created))
    else:
        logger.info("Schema already up to date")
    return created


if __name__ == "__main__":
    main()
