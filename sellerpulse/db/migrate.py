"""Apply the ingestion schema and verify the tables the pipeline writes to."""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
from typing import Iterable

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sellerpulse.db.session import create_engine_from_env

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")
REQUIRED_TABLES = ("sales_metrics", "orders", "ads_campaigns", "ingestion_logs")


def load_statements(sql: str) -> Iterable[str]:
    """Split a SQL script on trailing semicolons, dropping ``--`` comment lines."""
    pending: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        pending.append(line)
        if stripped.endswith(";"):
            yield "\n".join(pending)
            pending = []
    if pending:
        yield "\n".join(pending)


def run_migrations(engine: Engine, schema_path: pathlib.Path = SCHEMA_PATH) -> int:
    statements = list(load_statements(schema_path.read_text()))
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    logger.info("Applied %s schema statements from %s", len(statements), schema_path.name)
    return len(statements)


def missing_tables(engine: Engine) -> list[str]:
    existing = set(inspect(engine).get_table_names())
    return [table for table in REQUIRED_TABLES if table not in existing]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create or verify the SellerPulse ingestion tables")
    parser.add_argument("--check", action="store_true", help="only report missing tables")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    try:
        if not args.check:
            run_migrations(engine)
        missing = missing_tables(engine)
    except SQLAlchemyError as exc:
        logger.error("Migration failed: %s", exc)
        return 2
    if missing:
        logger.error("Missing tables: %s", ", ".join(missing))
        return 1
    logger.info("All ingestion tables present")
    return 0


if __name__ == "__main__":
    sys.exit(main())
