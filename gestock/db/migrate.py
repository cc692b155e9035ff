#!/usr/bin/env python3
"""
Simple migration bootstrapper.

Creates all tables defined in `gestock.db.models`, adds the undo columns to
older SQLite `order_items` tables, and prints a table-row summary.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from gestock.db.models import Base
from gestock.db.session import get_database_url, get_engine, get_session

ORDER_ITEM_COLUMNS = {
    "display_name": "TEXT",
    "stock_qty": "NUMERIC",
    "stock_updated_at": "DATETIME",
    "previous_qty": "NUMERIC",
    "previous_qty_updated_at": "DATETIME",
}


def _ensure_sqlite_directory() -> None:
    url = get_database_url()
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if not database or database in {":memory:", ""}:
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


def _ensure_order_item_columns(engine: Engine) -> None:
    if engine.dialect.name != "sqlite":
        return
    with engine.begin() as conn:
        rows = conn.exec_driver_sql("PRAGMA table_info('order_items')").fetchall()
        existing = {row[1] for row in rows}
        for column, ddl_type in ORDER_ITEM_COLUMNS.items():
            if column not in existing:
                conn.exec_driver_sql(f"ALTER TABLE order_items ADD COLUMN {column} {ddl_type}")


def _collect_counts() -> Dict[str, int]:
    counts: Dict[str, int] = {}
    with get_session() as session:
        for table in Base.metadata.sorted_tables:
            counts[table.name] = session.execute(select(func.count()).select_from(table)).scalar_one()
    return counts


def migrate(engine: Engine, reset: bool = False) -> None:
    if reset:
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    _ensure_order_item_columns(engine)


def main(argv: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(description="Create or upgrade the database schema")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop and recreate all tables (SQLite only). WARNING: destructive.",
    )
    args = parser.parse_args(argv)

    _ensure_sqlite_directory()
    engine = get_engine()
    if args.reset and engine.dialect.name != "sqlite":
        print("--reset is only supported for SQLite databases.", file=sys.stderr)
        sys.exit(1)

    migrate(engine, reset=args.reset)
    if args.reset:
        print("Dropped and recreated tables (SQLite reset).")

    print("Migration complete. Table row counts:")
    for name, count in _collect_counts().items():
        print(f"  - {name}: {count}")


if __name__ == "__main__":
    main()
